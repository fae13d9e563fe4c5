"""Cloud Encrypt Meta information.
   Cloud Encrypt protects configuration secrets and files with cloud KMS providers.
"""
__title__ = 'cloud_encrypt'
__description__ = (
   'Cloud Encrypt protects configuration values, files and stored secrets '
   'with AWS, Azure and GCP key management services.'
)
__version__ = '1.0.0'
__copyright__ = 'Copyright (c) 2025 DScope'
__author__ = 'DScope'
__author_email__ = 'dev@dscope.io'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/dscope-io/cloud-encrypt'
