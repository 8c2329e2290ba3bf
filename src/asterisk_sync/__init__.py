"""Asterisk AMI client and PJSIP configuration reconciliation."""

__version__ = "0.1.0"
