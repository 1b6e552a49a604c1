# agent/contracts.py
# ABI fragments of the CapyCore factory and the CapyPoll clones used by the agent

CAPY_CORE_ABI = [
    {
        "inputs": [],
        "name": "getPollCount",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"name": "index", "type": "uint256"}],
        "name": "getPollAt",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"name": "pollAddress", "type": "address"}],
        "name": "getPollDetails",
        "outputs": [
            {"name": "exists", "type": "bool"},
            {"name": "description", "type": "string"}
        ],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "creator", "type": "address"},
            {"indexed": True, "name": "pollAddress", "type": "address"},
            {"indexed": False, "name": "yesToken", "type": "address"},
            {"indexed": False, "name": "noToken", "type": "address"},
            {"indexed": False, "name": "question", "type": "string"},
            {"indexed": False, "name": "avatar", "type": "string"},
            {"indexed": False, "name": "description", "type": "string"}
        ],
        "name": "PollCreated",
        "type": "event"
    }
]

CAPY_POLL_ABI = [
    {
        "inputs": [],
        "name": "getPollInfo",
        "outputs": [
            {
                "components": [
                    {"name": "endTimestamp", "type": "uint256"},
                    {"name": "yesToken", "type": "address"},
                    {"name": "noToken", "type": "address"},
                    {"name": "totalStaked", "type": "uint256"},
                    {"name": "isResolved", "type": "bool"},
                    {"name": "winningPosition", "type": "bool"}
                ],
                "name": "",
                "type": "tuple"
            }
        ],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "currentEpoch",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"name": "epochNumber", "type": "uint256"}],
        "name": "getEpochInfo",
        "outputs": [
            {"name": "startTime", "type": "uint256"},
            {"name": "endTime", "type": "uint256"},
            {"name": "totalDistribution", "type": "uint256"},
            {"name": "isDistributed", "type": "bool"},
            {"name": "numStakers", "type": "uint256"}
        ],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"name": "epochNumber", "type": "uint256"}],
        "name": "distributeEpochRewards",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [{"name": "winningPosition", "type": "bool"}],
        "name": "resolvePoll",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]
