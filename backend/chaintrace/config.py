# backend/chaintrace/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/chaintrace.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///chaintrace.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Registry contract connection. CONTRACT_ADDRESS unset means "chain not configured".
    CHAIN_RPC_URL = os.environ.get("CHAIN_RPC_URL", "http://127.0.0.1:8545")
    CONTRACT_ADDRESS = os.environ.get("CONTRACT_ADDRESS")
    CONTRACT_ABI_PATH = os.environ.get("CONTRACT_ABI_PATH", "sc-abi/SupplyChainTracker.json")
    CHAIN_PRIVATE_KEY = os.environ.get("CHAIN_PRIVATE_KEY")
    CHAIN_TX_TIMEOUT_SECONDS = float(os.environ.get("CHAIN_TX_TIMEOUT_SECONDS", "120"))
    # Proof-of-authority chains need the extraData middleware
    CHAIN_POA = os.environ.get("CHAIN_POA", "").lower() in ("1", "true", "yes")

    # Public verify page encoded into product QR codes
    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")
    CORS_ORIGINS = {
        origin.strip()
        for origin in os.environ.get(
            "CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
        ).split(",")
        if origin.strip()
    }

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
