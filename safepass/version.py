"""SafePass Meta information.
   SafePass keeps credential secrets and notes encrypted under a key
   derived from the user's master password.
"""
__title__ = 'safepass'
__description__ = (
   'SafePass keeps credential secrets and notes encrypted under a key '
   'derived from the user master password.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2026 SafePass developers'
__author__ = 'SafePass developers'
__license__ = 'Apache-2.0'
