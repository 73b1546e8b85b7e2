# tests/test_rules.py
"""
Rule tests.

- Scenario checks for reentrancy, unprotected owner changes, tx.origin
  authorization and block-derived randomness.
- One small vulnerable contract per remaining rule, asserting it fires.
- Guarded code does not trigger the sequence rules.
- Pre-0.7 `call.value()` syntax, and large repetitive inputs finishing in bounded time.
"""

import time

import pytest

from models import Category, Severity
from contract_scanner import default_catalog, scan
from contract_scanner.rules import BUILTIN_RULES, legacy_compiler

TIME_LIMIT_SECONDS = 60.0


def _ids(report):
    return {f.rule_id for f in report.findings}


def _by_rule(report, rule_id):
    return [f for f in report.findings if f.rule_id == rule_id]


def test_reentrancy_is_reported_at_the_call(vulnerable_vault):
    report = scan(vulnerable_vault)
    hits = _by_rule(report, "reentrancy")
    assert len(hits) == 1
    finding = hits[0]
    assert finding.severity is Severity.CRITICAL
    assert finding.category is Category.REENTRANCY
    call_line = vulnerable_vault[:vulnerable_vault.index("(bool ok")].count("\n") + 1
    assert finding.start_line == call_line
    assert "msg.sender.call" in finding.snippet
    assert report.risk_label == "Critical Risk"


def test_guarded_and_checked_withdraw_is_clean(guarded_vault, vulnerable_vault):
    ids = _ids(scan(guarded_vault))
    assert "reentrancy" not in ids
    assert "unchecked-low-level-call" not in ids
    assert "missing-amount-validation" not in ids
    assert "missing-pause-guard" not in ids
    assert "floating-pragma" not in ids

    guarded = vulnerable_vault.replace("uint256 amount) external {", "uint256 amount) external nonReentrant {")
    assert "reentrancy" not in _ids(scan(guarded))


def test_unprotected_owner_change(open_owner):
    report = scan(open_owner)
    hits = _by_rule(report, "unprotected-state-change")
    assert len(hits) == 1
    assert hits[0].severity is Severity.CRITICAL
    assert hits[0].category is Category.ACCESS_CONTROL
    assert hits[0].snippet.strip() == "owner = newOwner"

    protected = open_owner.replace("public {\n        owner = newOwner;", "public {\n        require(msg.sender == owner);\n        owner = newOwner;")
    assert "unprotected-state-change" not in _ids(scan(protected))


def test_tx_origin_authorization_is_reported_once(tx_origin_auth):
    report = scan(tx_origin_auth)
    hits = _by_rule(report, "tx-origin-auth")
    assert len(hits) == 1
    assert hits[0].severity is Severity.HIGH
    assert hits[0].category is Category.ACCESS_CONTROL
    high_access = [f for f in report.findings if f.severity is Severity.HIGH and f.category is Category.ACCESS_CONTROL]
    assert high_access == hits


def test_block_randomness(lottery):
    hits = _by_rule(scan(lottery), "weak-randomness")
    assert len(hits) == 1
    assert hits[0].severity is Severity.HIGH
    assert hits[0].category is Category.RANDOMNESS
    assert "block.prevrandao" in hits[0].snippet


def test_text_rules_still_cover_unparsable_units():
    src = """pragma solidity 0.8.19;
contract Broken {
    address admin;
    function a() public {
        require(tx.origin == admin);
    function b() public { }
}
"""
    report = scan(src)
    assert len(_by_rule(report, "tx-origin-auth")) == 1
    assert [b.name for b in report.metadata.unparsable_blocks] == ["Broken.a"]
    assert report.metadata.rule_errors == ()


CASES = {
    "reentrancy": """
contract Vault {
    mapping(address => uint256) public balances;
    function withdraw() external {
        (bool ok, ) = msg.sender.call{value: balances[msg.sender]}("");
        require(ok);
        balances[msg.sender] = 0;
    }
}""",
    "flashloan-price-manipulation": """
contract Oracle {
    IUniswapV2Pair public pair;
    function price() external view returns (uint256) {
        (uint112 r0, uint112 r1, ) = pair.getReserves();
        return uint256(r1) * 1e18 / uint256(r0);
    }
}""",
    "delegatecall-untrusted": """
contract Proxy {
    function forward(address target, bytes calldata data) external {
        (bool ok, ) = target.delegatecall(data);
        require(ok);
    }
}""",
    "unprotected-state-change": """
contract Wallet {
    address public owner;
    function setOwner(address newOwner) public {
        owner = newOwner;
    }
}""",
    "unprotected-selfdestruct": """
contract Killable {
    function kill() public {
        selfdestruct(payable(msg.sender));
    }
}""",
    "tx-origin-auth": """
contract Treasury {
    address public owner;
    function sweep(address to) external {
        if (tx.origin != owner) { revert(); }
        payable(to).transfer(address(this).balance);
    }
}""",
    "unchecked-call-return": """
contract Payer {
    IERC20 public token;
    function pay(address to, uint256 amount) external {
        token.transfer(to, amount);
    }
}""",
    "unchecked-low-level-call": """
contract Caller {
    function ping(address target) external {
        target.call(abi.encodeWithSignature("ping()"));
    }
}""",
    "unchecked-arithmetic": """pragma solidity ^0.6.12;
contract Token {
    mapping(address => uint256) public balanceOf;
    function mint(address to, uint256 value) public {
        balanceOf[to] += value;
    }
}""",
    "front-running": """
contract Swapper {
    IRouter public router;
    function dump(uint256 amountIn, address[] calldata path) external {
        router.swapExactTokensForTokens(amountIn, 0, path, msg.sender, block.timestamp);
    }
}""",
    "signature-replay": """
contract Claim {
    address public signer;
    function claim(uint256 amount, uint8 v, bytes32 r, bytes32 s) external {
        bytes32 digest = keccak256(abi.encodePacked(msg.sender, amount));
        require(ecrecover(digest, v, r, s) == signer, "bad sig");
        payable(msg.sender).transfer(amount);
    }
}""",
    "weak-randomness": """
contract Dice {
    function roll() external view returns (uint256) {
        return uint256(blockhash(block.number - 1)) % 6;
    }
}""",
    "timestamp-dependence": """
contract Vesting {
    uint256 public releaseTime;
    function release() external {
        if (block.timestamp >= releaseTime) {
            releaseTime = 0;
        }
    }
}""",
    "missing-zero-address-check": """
contract Registry {
    address public treasury;
    constructor(address treasury_) {
        treasury = treasury_;
    }
}""",
    "missing-access-modifier": """
contract Config {
    uint256 public fee;
    modifier onlyOwner() { _; }
    function setFee(uint256 newFee) external {
        fee = newFee;
    }
    function pause() external onlyOwner {}
}""",
    "missing-amount-validation": """
contract Bank {
    mapping(address => uint256) public balances;
    function withdraw(uint256 amount) external {
        balances[msg.sender] -= amount;
        payable(msg.sender).transfer(amount);
    }
}""",
    "unbounded-loop-external-call": """
contract Payout {
    address payable[] public payees;
    function payAll() external {
        for (uint256 i = 0; i < payees.length; i++) {
            payees[i].transfer(1 ether);
        }
    }
}""",
    "single-owner-critical": """
contract Owned {
    address public owner;
    modifier onlyOwner() { require(msg.sender == owner); _; }
    function withdrawAll() external onlyOwner {
        payable(owner).transfer(address(this).balance);
    }
}""",
    "missing-pause-guard": """
contract Bank {
    mapping(address => uint256) public balances;
    function withdraw(uint256 amount) external {
        require(balances[msg.sender] >= amount);
        balances[msg.sender] -= amount;
        payable(msg.sender).transfer(amount);
    }
}""",
    "missing-event-emission": """
contract Config {
    address public admin;
    function setAdmin(address next) external {
        require(msg.sender == admin);
        admin = next;
    }
}""",
    "state-variable-shadowing": """
contract Shadow {
    uint256 public total;
    uint256 public limit;
    event Updated(uint256 v);
    function update(uint256 total) external {
        uint256 limit = total;
        emit Updated(limit);
    }
}""",
    "strict-balance-equality": """
contract Game {
    function finish() external {
        require(address(this).balance == 10 ether);
    }
}""",
    "transfer-fixed-gas": """
contract Refund {
    function refund() external {
        payable(msg.sender).transfer(1 ether);
    }
}""",
    "floating-pragma": """pragma solidity ^0.8.0;
contract Empty {}""",
    "encode-packed-collision": """
contract Hasher {
    function id(string memory a, string memory b) external pure returns (bytes32) {
        return keccak256(abi.encodePacked(a, b));
    }
}""",
}


def test_every_builtin_rule_has_a_case():
    assert set(CASES) == {rule.id for rule in BUILTIN_RULES}


@pytest.mark.parametrize("rule_id", sorted(CASES))
def test_rule_fires(rule_id):
    report = scan(CASES[rule_id])
    assert report.metadata.rule_errors == ()
    hits = _by_rule(report, rule_id)
    assert hits, f"{rule_id} did not fire"
    rule = default_catalog().get(rule_id)
    assert all(f.severity is rule.severity and f.category is rule.category for f in hits)


def test_unchecked_block_arithmetic():
    src = """pragma solidity 0.8.19;
contract Counter {
    uint256 public total;
    function add(uint256 x) external {
        unchecked {
            total = total + x;
        }
        for (uint256 i = 0; i < 3;) {
            unchecked { ++i; }
        }
    }
}"""
    hits = _by_rule(scan(src), "unchecked-arithmetic")
    assert len(hits) == 1
    assert "total + x" in hits[0].snippet


def test_legacy_compiler_detection():
    assert legacy_compiler("pragma solidity ^0.6.12;")
    assert legacy_compiler("pragma solidity >=0.7.0 <0.9.0;")
    assert not legacy_compiler("pragma solidity 0.8.19;")
    assert not legacy_compiler("contract A {}")


def test_catalog_covers_every_category():
    rules = default_catalog().rules()
    assert len(rules) >= 22
    assert {r.category for r in rules} == set(Category)


def test_legacy_call_value_reentrancy():
    src = """pragma solidity ^0.4.24;
contract Bank {
    mapping(address => uint) public balances;
    function withdraw(uint amount) {
        require(msg.sender.call.value(amount)());
        balances[msg.sender] -= amount;
    }
    function sweep(address to) {
        to.call.gas(50000).value(this.balance)();
    }
}"""
    report = scan(src)
    hits = _by_rule(report, "reentrancy")
    assert len(hits) == 1
    assert "call.value(amount)" in hits[0].snippet
    unchecked = _by_rule(report, "unchecked-low-level-call")
    assert [f.snippet.strip() for f in unchecked] == ["to.call.gas(50000).value(this.balance)()"]


def test_low_level_success_flag_must_be_read_later():
    src = """pragma solidity 0.8.19;
contract Relay {
    function relay(address target, bytes calldata data) external {
        (bool sent, ) = target.call(data);
        (bool ok, ) = target.call(data);
        require(ok, "failed");
    }
}"""
    hits = _by_rule(scan(src), "unchecked-low-level-call")
    assert len(hits) == 1
    assert "bool sent" in hits[0].snippet


def test_answer_check_before_payout_is_front_runnable():
    src = """pragma solidity 0.8.19;
contract Puzzle {
    bytes32 public answerHash;
    function solve(string memory answer) external {
        require(keccak256(abi.encodePacked(answer)) == answerHash);
        payable(msg.sender).transfer(1 ether);
    }
    function check(string memory answer) external view returns (bool) {
        return keccak256(abi.encodePacked(answer)) == answerHash;
    }
}"""
    hits = _by_rule(scan(src), "front-running")
    assert len(hits) == 1
    assert "keccak256" in hits[0].snippet


def test_zero_address_check_anywhere_in_the_body_counts():
    src = """pragma solidity 0.8.19;
contract Registry {
    address public treasury;
    address public keeper;
    function configure(address treasury_, address keeper_) external {
        require(msg.sender == keeper);
        treasury = treasury_;
        keeper = keeper_;
        require(address(0) != treasury_, "zero");
    }
}"""
    hits = _by_rule(scan(src), "missing-zero-address-check")
    assert [f.snippet.strip() for f in hits] == ["keeper = keeper_"]


def test_zero_address_rule_scales_with_repeated_assignments():
    body = "o = a;" * 30_000
    src = "contract C { address o; function f(address a) public {" + body + "} }"
    start = time.perf_counter()
    report = scan(src)
    assert time.perf_counter() - start < TIME_LIMIT_SECONDS
    assert not report.metadata.budget_exceeded
    assert len(_by_rule(report, "missing-zero-address-check")) == 30_000


def test_only_loops_that_reach_an_external_call_are_reported():
    src = """pragma solidity 0.8.19;
contract Payout {
    address payable[] public payees;
    uint256 public total;
    function run() external {
        for (uint256 i = 0; i < payees.length; i++) {
            for (uint256 j = 0; j < 3; j++) { total += j; }
        }
        for (uint256 k = 0; k < payees.length; k++) {
            if (k > 0) { payees[k].transfer(1); }
        }
    }
}"""
    hits = _by_rule(scan(src), "unbounded-loop-external-call")
    assert len(hits) == 1
    assert "k < payees.length" in hits[0].snippet


def test_self_balance_ratio_and_long_products():
    product = " * ".join(["x"] * 30_000)
    src = f"""pragma solidity 0.8.19;
contract Vault {{
    IERC20 public token;
    uint256 public supply;
    uint256 public x;
    function share(uint256 amount) external view returns (uint256) {{
        return amount * token.balanceOf(address(this)) / supply;
    }}
    function big() external {{
        x = {product};
    }}
}}"""
    start = time.perf_counter()
    report = scan(src)
    assert time.perf_counter() - start < TIME_LIMIT_SECONDS
    hits = _by_rule(report, "flashloan-price-manipulation")
    assert len(hits) == 1
    assert "balanceOf(address(this))" in hits[0].snippet
