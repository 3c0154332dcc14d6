"""ContractUtility: Web3 initialization and oracle contract ABI."""

from eth_account import Account
from eth_account.signers.local import LocalAccount
from sapphirepy import sapphire
from web3 import Web3
from web3.middleware import SignAndSendRawMiddlewareBuilder

NETWORKS = {
    "sapphire": "https://sapphire.oasis.io",
    "sapphire-testnet": "https://testnet.sapphire.oasis.io",
    "sapphire-localnet": "http://localhost:8545",
}

# Well-known localnet test account, used when no signer key is configured.
LOCALNET_SIGNER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"

# Oracle contract surface the pipeline uses.
ORACLE_ABI: list[dict] = [
    {
        "type": "function",
        "name": "setAggregatedPrice",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "price", "type": "uint256"}],
        "outputs": [],
    },
]


class ContractUtility:
    """Utility for Web3 connection and oracle contract access.

    :ivar network: Network RPC URL.
    :ivar w3: Configured Web3 instance (Sapphire-wrapped on Sapphire networks).
    :ivar account: Signing account, or None for read-only use.
    """

    def __init__(
        self,
        network_name: str,
        rpc_url: str | None = None,
        signer_key: str | None = None,
    ) -> None:
        """Initialize the contract utility.

        :param network_name: Known network name, or an RPC URL.
        :param rpc_url: Overrides the default RPC URL for the network.
        :param signer_key: Hex private key used to sign transactions.
        """
        self.network = rpc_url or NETWORKS.get(network_name, network_name)

        self.w3 = Web3(Web3.HTTPProvider(self.network))

        if signer_key is None and network_name == "sapphire-localnet":
            signer_key = LOCALNET_SIGNER_KEY

        self.account: LocalAccount | None = None
        if signer_key:
            self.account = Account.from_key(signer_key)
            self.w3.middleware_onion.add(
                SignAndSendRawMiddlewareBuilder.build(self.account)
            )
            self.w3.eth.default_account = self.account.address

        if network_name in NETWORKS:
            self.w3 = sapphire.wrap(self.w3)

    def get_oracle_contract(self, address: str):
        """Contract handle for the oracle at ``address``."""
        return self.w3.eth.contract(
            address=Web3.to_checksum_address(address), abi=ORACLE_ABI
        )
