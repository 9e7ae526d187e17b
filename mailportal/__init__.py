"""Mail portal backend: SMTP relay accounts, credential vault and dispatch"""

__version__ = "1.0.0"
