"""Configuration - loads from .env file"""

import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load .env file from project root
env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

# Solana endpoints
SOLANA_RPC_URL = os.getenv("SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com")
SOLANA_WS_URL = os.getenv("SOLANA_WS_URL", "wss://api.mainnet-beta.solana.com")
COMMITMENT = os.getenv("COMMITMENT", "confirmed")

# "account" (accountSubscribe) or "transaction" (logsSubscribe + getTransaction)
INGESTION_SOURCE = os.getenv("INGESTION_SOURCE", "account")

# Solana constants
WSOL_MINT = "So11111111111111111111111111111111111111112"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
LAMPORTS_PER_SOL = 1_000_000_000
WSOL_DECIMALS = 9

# Balance tracking
HISTORY_CAP = int(os.getenv("HISTORY_CAP", "10000000"))
CHART_POINT_CAP = int(os.getenv("CHART_POINT_CAP", "1000"))
SUMMARY_POINT_CAP = 100
CHANGE_EPSILON = float(os.getenv("CHANGE_EPSILON", "0.000001"))
RECORD_FIRST_POINT = os.getenv("RECORD_FIRST_POINT", "true").lower() == "true"

# Live updates
BROADCAST_INTERVAL = float(os.getenv("BROADCAST_INTERVAL", "1"))
BROADCAST_EPSILON = sys.float_info.epsilon

# Connection settings
RECONNECT_DELAY = int(os.getenv("RECONNECT_DELAY", "10"))
CONNECTION_TIMEOUT = 30
REQUEST_RETRY_ATTEMPTS = 3
WS_HEARTBEAT = 30

# Web server
SERVER_HOST = os.getenv("SERVER_HOST", "127.0.0.1")
SERVER_PORT = int(os.getenv("SERVER_PORT", "3000"))

# Storage
DATABASE_PATH = os.getenv("DATABASE_PATH", "data/wallet_history.db")
WALLETS_FILE = os.getenv("WALLETS_FILE", "wallets.json")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "wallet_monitor.log")
