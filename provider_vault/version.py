"""Provider Vault Meta information.
   Provider Vault keeps third-party AI provider API keys encrypted at rest
   and rotates them between encryption keys.
"""
__title__ = 'provider_vault'
__description__ = (
   'Provider Vault keeps third-party AI provider API keys encrypted '
   'at rest and rotates them between encryption keys.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2023 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
