# packages/voting/config.py
import os
import logging
from pythonjsonlogger import jsonlogger

# -----------------------------------------------------------------------------
# Chain + contract. An empty CONTRACT_ADDRESS puts the service in demo mode.
# -----------------------------------------------------------------------------
RPC_URL = os.getenv("RPC_URL", "https://ethereum-sepolia-rpc.publicnode.com")
CONTRACT_ADDRESS = os.getenv("CONTRACT_ADDRESS", "")
REQUIRED_CHAIN_ID = int(os.getenv("REQUIRED_CHAIN_ID", "11155111"))

# Wallet used as the signer. Without a private key the node's own unlocked
# accounts are used.
WALLET_RPC_URL = os.getenv("WALLET_RPC_URL", RPC_URL)
WALLET_PRIVATE_KEY = os.getenv("WALLET_PRIVATE_KEY")
WALLET_BUSY_RETRY_DELAY = float(os.getenv("WALLET_BUSY_RETRY_DELAY", "3.0"))
WALLET_POLL_INTERVAL = float(os.getenv("WALLET_POLL_INTERVAL", "4.0"))

# Off-chain metadata documents
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./openqura.db")

# Admin API
JWT_SECRET = os.getenv("JWT_SECRET", "dev-jwt-secret")
FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")

# Push Protocol configuration
PUSH_API_URL = os.getenv("PUSH_API_URL", "https://backend.epns.io/apis/v1/payloads")
PUSH_CHANNEL = os.getenv("PUSH_CHANNEL")
PUSH_ENV = os.getenv("PUSH_ENV", "staging")

SENTRY_DSN = os.getenv("SENTRY_DSN")


def configure_logging(level: int = logging.INFO) -> None:
    """Route all log records through a single JSON handler."""
    handler = logging.StreamHandler()
    handler.setFormatter(jsonlogger.JsonFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)
