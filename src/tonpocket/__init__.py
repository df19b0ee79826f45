"""tonpocket - sync and wallet-connect core for a non-custodial TON wallet."""

__version__ = "0.1.0"
