"""
Keyward — API credential, permission and security-event core.

Sits in front of the unblock lookup service and decides who may call it:
credentials are issued and validated here, role rules are evaluated here,
and every suspicious outcome lands in the security monitor.
"""

__version__ = "0.3.0"
