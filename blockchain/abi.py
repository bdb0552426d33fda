"""ABIs of the deployed CampaignFactory and Campaign contracts."""


def _view(name: str, output_type: str, inputs: list | None = None) -> dict:
    return {
        "inputs": inputs or [],
        "name": name,
        "outputs": [{"internalType": output_type, "name": "", "type": output_type}],
        "stateMutability": "view",
        "type": "function",
    }


def _call(name: str, mutability: str = "nonpayable", inputs: list | None = None) -> dict:
    return {
        "inputs": inputs or [],
        "name": name,
        "outputs": [],
        "stateMutability": mutability,
        "type": "function",
    }


CAMPAIGN_FACTORY_ABI = [
    _call(
        "createCampaign",
        inputs=[
            {"internalType": "uint256", "name": "_goal", "type": "uint256"},
            {"internalType": "uint256", "name": "_duration", "type": "uint256"},
        ],
    ),
    _view("getCampaigns", "address[]"),
    _view(
        "campaigns",
        "address",
        inputs=[{"internalType": "uint256", "name": "", "type": "uint256"}],
    ),
]

CAMPAIGN_ABI = [
    _view("creator", "address"),
    _view("goal", "uint256"),
    _view("deadline", "uint256"),
    _view("totalContributed", "uint256"),
    _view("withdrawn", "bool"),
    _call("contribute", mutability="payable"),
    _view(
        "contributions",
        "uint256",
        inputs=[{"internalType": "address", "name": "", "type": "address"}],
    ),
    {
        "inputs": [],
        "name": "getDetails",
        "outputs": [
            {"internalType": "address", "name": "campaignCreator", "type": "address"},
            {"internalType": "uint256", "name": "targetGoal", "type": "uint256"},
            {"internalType": "uint256", "name": "endTime", "type": "uint256"},
            {"internalType": "uint256", "name": "balance", "type": "uint256"},
            {"internalType": "bool", "name": "goalReached", "type": "bool"},
            {"internalType": "bool", "name": "fundsWithdrawn", "type": "bool"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    _call("withdraw"),
    _call("refund"),
]

CAMPAIGN_CREATED_EVENT = "CampaignCreated(address,address)"
