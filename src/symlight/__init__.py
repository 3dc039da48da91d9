"""symlight - streaming code explanations rendered as safe, navigable markup."""

__version__ = "0.1.0"
