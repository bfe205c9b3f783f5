import os
from eth_utils import event_abi_to_log_topic
from web3 import Web3

AMM_RPC_URL = os.getenv("AMM_RPC_URL", "https://testnet-rpc.monad.xyz")
CHAIN_NETWORK = os.getenv("CHAIN_NETWORK", "monad-testnet")

# Empty means every key is rejected
BACKFILL_API_KEY = os.getenv("BACKFILL_API_KEY", "")
# HMAC key for pushed webhooks; empty means every delivery is rejected
WEBHOOK_SIGNING_KEY = os.getenv("AMM_WEBHOOK_SIGNING_KEY", "")

AMM_FACTORY_ADDRESS = os.getenv(
    "AMM_FACTORY_ADDRESS", "0xB6162CcC7E84C18D605c6DFb4c337227C6dC5dF7"
).lower()

WRAPPED_NATIVE_ADDRESS = os.getenv(
    "WRAPPED_NATIVE_ADDRESS", "0x760afe86e5de5fa0ee542fc7b7b713e1c5425701"
).lower()
WRAPPED_NATIVE_DECIMALS = int(os.getenv("WRAPPED_NATIVE_DECIMALS", "18"))
USD_STABLE_ADDRESS = os.getenv(
    "USD_STABLE_ADDRESS", "0xf817257fed379853cde0fa4f97ab987181b1e5ea"
).lower()
USD_STABLE_DECIMALS = int(os.getenv("USD_STABLE_DECIMALS", "6"))

# "0xtoken:decimals,0xtoken:decimals"
TOKEN_DECIMALS_OVERRIDES = {
    address.strip().lower(): int(decimals)
    for address, decimals in (
        item.split(":") for item in os.getenv("TOKEN_DECIMALS", "").split(",") if item.strip()
    )
}

# ── pacing defaults ──────────────────────────────────────────────
DEFAULT_CHUNK_SIZE = 100            # blocks per eth_getLogs call
DEFAULT_CHUNK_DELAY_MS = 200
DEFAULT_BATCH_SIZE = 3              # pairs per discovery batch
DEFAULT_BATCH_DELAY_MS = 1000
DEFAULT_CALL_DELAY_MS = 200         # between per-pair detail reads
DEFAULT_HOURS_AGO = 1

# ── analytics constants ──────────────────────────────────────────
DEFAULT_TOKEN_DECIMALS = 18
VOLUME_DECIMALS = 18                # assumed for every traded token0
SWAP_FEE_RATE = "0.003"
SNAPSHOT_BUCKET_SECONDS = 3600

# ── ABIs ──────────────────────────────────────────────────────────
FACTORY_ABI = [
    { "name": "allPairsLength", "outputs": [ { "type": "uint256" } ],
      "inputs": [], "stateMutability": "view", "type": "function"},
    { "name": "allPairs", "outputs": [ { "type": "address" } ],
      "inputs": [ { "name": "", "type": "uint256" } ],
      "stateMutability": "view", "type": "function"},
    { "name": "getPair", "outputs": [ { "type": "address" } ],
      "inputs": [ { "name": "tokenA", "type": "address" },
                  { "name": "tokenB", "type": "address" } ],
      "stateMutability": "view", "type": "function"},
]

PAIR_ABI = [
    { "name": "token0", "outputs": [ { "type": "address" } ],
      "inputs": [], "stateMutability": "view", "type": "function"},
    { "name": "token1", "outputs": [ { "type": "address" } ],
      "inputs": [], "stateMutability": "view", "type": "function"},
    { "name": "getReserves",
      "outputs": [ { "name": "reserve0", "type": "uint112" },
                   { "name": "reserve1", "type": "uint112" },
                   { "name": "blockTimestampLast", "type": "uint32" } ],
      "inputs": [], "stateMutability": "view", "type": "function"},
    { "name": "totalSupply", "outputs": [ { "type": "uint256" } ],
      "inputs": [], "stateMutability": "view", "type": "function"},
]

PAIR_CREATED_ABI = {
    "anonymous": False,
    "inputs": [
        {"indexed": True, "name": "token0", "type": "address"},
        {"indexed": True, "name": "token1", "type": "address"},
        {"indexed": False, "name": "pair", "type": "address"},
        {"indexed": False, "name": "", "type": "uint256"},
    ],
    "name": "PairCreated",
    "type": "event",
}

MINT_ABI = {
    "anonymous": False,
    "inputs": [
        {"indexed": True, "name": "sender", "type": "address"},
        {"indexed": False, "name": "amount0", "type": "uint256"},
        {"indexed": False, "name": "amount1", "type": "uint256"},
    ],
    "name": "Mint",
    "type": "event",
}

BURN_ABI = {
    "anonymous": False,
    "inputs": [
        {"indexed": True, "name": "sender", "type": "address"},
        {"indexed": False, "name": "amount0", "type": "uint256"},
        {"indexed": False, "name": "amount1", "type": "uint256"},
        {"indexed": True, "name": "to", "type": "address"},
    ],
    "name": "Burn",
    "type": "event",
}

SWAP_ABI = {
    "anonymous": False,
    "inputs": [
        {"indexed": True, "name": "sender", "type": "address"},
        {"indexed": False, "name": "amount0In", "type": "uint256"},
        {"indexed": False, "name": "amount1In", "type": "uint256"},
        {"indexed": False, "name": "amount0Out", "type": "uint256"},
        {"indexed": False, "name": "amount1Out", "type": "uint256"},
        {"indexed": True, "name": "to", "type": "address"},
    ],
    "name": "Swap",
    "type": "event",
}

SYNC_ABI = {
    "anonymous": False,
    "inputs": [
        {"indexed": False, "name": "reserve0", "type": "uint112"},
        {"indexed": False, "name": "reserve1", "type": "uint112"},
    ],
    "name": "Sync",
    "type": "event",
}

PAIR_CREATED_TOPIC = Web3.to_hex(event_abi_to_log_topic(PAIR_CREATED_ABI))
MINT_TOPIC = Web3.to_hex(event_abi_to_log_topic(MINT_ABI))
BURN_TOPIC = Web3.to_hex(event_abi_to_log_topic(BURN_ABI))
SWAP_TOPIC = Web3.to_hex(event_abi_to_log_topic(SWAP_ABI))
SYNC_TOPIC = Web3.to_hex(event_abi_to_log_topic(SYNC_ABI))

AMM_TOPICS = [PAIR_CREATED_TOPIC, MINT_TOPIC, BURN_TOPIC, SWAP_TOPIC, SYNC_TOPIC]
