# tests/conftest.py
"""
Shared contract sources for the scanner tests.
"""

import pytest

VULNERABLE_VAULT = """pragma solidity ^0.8.0;

contract Vault {
    mapping(address => uint256) public balances;

    function deposit() external payable {
        balances[msg.sender] += msg.value;
    }

    function withdraw(uint256 amount) external {
        require(balances[msg.sender] >= amount, "insufficient");
        (bool ok, ) = msg.sender.call{value: amount}("");
        require(ok, "failed");
        balances[msg.sender] -= amount;
    }
}
"""

GUARDED_VAULT = """pragma solidity 0.8.19;

contract SafeVault {
    mapping(address => uint256) public balances;
    event Withdrawn(address indexed who, uint256 amount);

    function withdraw(uint256 amount) external nonReentrant whenNotPaused {
        require(amount > 0 && balances[msg.sender] >= amount, "bad amount");
        balances[msg.sender] -= amount;
        (bool ok, ) = msg.sender.call{value: amount}("");
        require(ok, "failed");
        emit Withdrawn(msg.sender, amount);
    }
}
"""

OPEN_OWNER = """pragma solidity 0.8.19;

contract Wallet {
    address public owner;

    constructor() {
        owner = msg.sender;
    }

    function setOwner(address newOwner) public {
        owner = newOwner;
    }
}
"""

TX_ORIGIN = """pragma solidity 0.8.19;

contract Treasury {
    address public owner;

    constructor() {
        owner = msg.sender;
    }

    function authorize(address spender) external view returns (bool) {
        require(tx.origin == owner, "not owner");
        return spender != address(0);
    }
}
"""

LOTTERY = """pragma solidity 0.8.19;

contract Lottery {
    address[] public players;

    function pickWinner() external {
        uint256 index = uint256(keccak256(abi.encodePacked(block.timestamp, block.prevrandao, players.length))) % players.length;
        address winner = players[index];
        payable(winner).transfer(address(this).balance);
        delete players;
    }
}
"""

SAMPLE_CONTRACTS = [VULNERABLE_VAULT, GUARDED_VAULT, OPEN_OWNER, TX_ORIGIN, LOTTERY]


@pytest.fixture
def vulnerable_vault():
    return VULNERABLE_VAULT


@pytest.fixture
def guarded_vault():
    return GUARDED_VAULT


@pytest.fixture(params=SAMPLE_CONTRACTS, ids=["vault", "guarded", "owner", "tx-origin", "lottery"])
def sample_contract(request):
    return request.param


@pytest.fixture
def open_owner():
    return OPEN_OWNER


@pytest.fixture
def tx_origin_auth():
    return TX_ORIGIN


@pytest.fixture
def lottery():
    return LOTTERY
