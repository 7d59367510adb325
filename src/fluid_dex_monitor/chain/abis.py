"""ABI fragments for the contracts the monitor talks to."""

from __future__ import annotations

from typing import Any

RESOLVER_ABI: list[dict[str, Any]] = [
    {
        "inputs": [],
        "name": "getAllPoolAddresses",
        "outputs": [{"internalType": "address[]", "name": "pools_", "type": "address[]"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "pool_", "type": "address"}],
        "name": "getPoolTokens",
        "outputs": [
            {"internalType": "address", "name": "token0_", "type": "address"},
            {"internalType": "address", "name": "token1_", "type": "address"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "dex_", "type": "address"}],
        "name": "getDexCollateralReservesAdjusted",
        "outputs": [
            {
                "components": [
                    {"internalType": "uint256", "name": "token0RealReserves", "type": "uint256"},
                    {"internalType": "uint256", "name": "token1RealReserves", "type": "uint256"},
                    {"internalType": "uint256", "name": "token0ImaginaryReserves", "type": "uint256"},
                    {"internalType": "uint256", "name": "token1ImaginaryReserves", "type": "uint256"},
                ],
                "internalType": "struct IFluidDexT1.CollateralReserves",
                "name": "reserves_",
                "type": "tuple",
            }
        ],
        "stateMutability": "view",
        "type": "function",
    },
]

SWAP_EVENT_ABI: dict[str, Any] = {
    "anonymous": False,
    "inputs": [
        {"indexed": True, "internalType": "address", "name": "user", "type": "address"},
        {"indexed": False, "internalType": "bool", "name": "swap0to1", "type": "bool"},
        {"indexed": False, "internalType": "uint256", "name": "amountIn", "type": "uint256"},
        {"indexed": False, "internalType": "uint256", "name": "amountOut", "type": "uint256"},
        {"indexed": False, "internalType": "address", "name": "to", "type": "address"},
    ],
    "name": "Swap",
    "type": "event",
}

DEPOSIT_EVENT_ABI: dict[str, Any] = {
    "anonymous": False,
    "inputs": [
        {"indexed": True, "internalType": "address", "name": "user", "type": "address"},
        {"indexed": False, "internalType": "uint256", "name": "sharesMinted", "type": "uint256"},
        {"indexed": False, "internalType": "uint256", "name": "token0Amount", "type": "uint256"},
        {"indexed": False, "internalType": "uint256", "name": "token1Amount", "type": "uint256"},
    ],
    "name": "Deposit",
    "type": "event",
}

WITHDRAW_EVENT_ABI: dict[str, Any] = {
    "anonymous": False,
    "inputs": [
        {"indexed": True, "internalType": "address", "name": "user", "type": "address"},
        {"indexed": False, "internalType": "uint256", "name": "sharesBurned", "type": "uint256"},
        {"indexed": False, "internalType": "uint256", "name": "token0Amount", "type": "uint256"},
        {"indexed": False, "internalType": "uint256", "name": "token1Amount", "type": "uint256"},
    ],
    "name": "Withdraw",
    "type": "event",
}

POOL_ABI: list[dict[str, Any]] = [
    SWAP_EVENT_ABI,
    DEPOSIT_EVENT_ABI,
    WITHDRAW_EVENT_ABI,
    {
        "inputs": [],
        "name": "constantsView",
        "outputs": [
            {
                "components": [
                    {"internalType": "uint256", "name": "dexId", "type": "uint256"},
                    {"internalType": "address", "name": "liquidity", "type": "address"},
                    {"internalType": "address", "name": "factory", "type": "address"},
                    {"internalType": "address", "name": "token0", "type": "address"},
                    {"internalType": "address", "name": "token1", "type": "address"},
                ],
                "internalType": "struct IFluidDexT1.ConstantViews",
                "name": "",
                "type": "tuple",
            }
        ],
        "stateMutability": "view",
        "type": "function",
    },
]

LOG_OPERATE_EVENT_ABI: dict[str, Any] = {
    "anonymous": False,
    "inputs": [
        {"indexed": True, "internalType": "address", "name": "user", "type": "address"},
        {"indexed": True, "internalType": "address", "name": "token", "type": "address"},
        {"indexed": False, "internalType": "int256", "name": "supplyAmount", "type": "int256"},
        {"indexed": False, "internalType": "int256", "name": "borrowAmount", "type": "int256"},
        {"indexed": False, "internalType": "address", "name": "withdrawTo", "type": "address"},
        {"indexed": False, "internalType": "address", "name": "borrowTo", "type": "address"},
        {"indexed": False, "internalType": "uint256", "name": "totalAmounts", "type": "uint256"},
        {"indexed": False, "internalType": "uint256", "name": "exchangePricesAndConfig", "type": "uint256"},
    ],
    "name": "LogOperate",
    "type": "event",
}

ERC20_ABI: list[dict[str, Any]] = [
    {
        "inputs": [],
        "name": "symbol",
        "outputs": [{"internalType": "string", "name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    }
]

# ERC-4626 vault accounting used for the reference price.
VAULT_ABI: list[dict[str, Any]] = [
    {
        "inputs": [],
        "name": "totalAssets",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "totalSupply",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]
