import json
from pathlib import Path
from types import MappingProxyType

import pytest

from chain_deployer.errors import PlanError
from chain_deployer.orchestrator import Param, Ref, RunContext, StepKind
from chain_deployer.plans import ArtifactStore, load_plan, plan_from_dict

from chain_stubs import StubChainClient

EXAMPLE_PLAN = Path(__file__).resolve().parents[1] / "examples" / "plans" / "core.json"


@pytest.fixture
def artifacts(tmp_path: Path) -> ArtifactStore:
    root = tmp_path / "artifacts"
    contracts = root / "contracts"
    contracts.mkdir(parents=True)
    (contracts / "Timelock.json").write_text(json.dumps({"bytecode": "0x6001"}), encoding="utf-8")
    (contracts / "Timelock.dbg.json").write_text("{}", encoding="utf-8")
    (contracts / "Token.json").write_text(json.dumps({"bytecode": "6002"}), encoding="utf-8")
    (contracts / "IToken.json").write_text(json.dumps({"bytecode": "0x"}), encoding="utf-8")
    return ArtifactStore(root)


def test_artifact_lookup(artifacts: ArtifactStore) -> None:
    assert artifacts.bytecode("Timelock") == "0x6001"
    assert artifacts.bytecode("Token") == "0x6002"


def test_interface_artifact_rejected(artifacts: ArtifactStore) -> None:
    with pytest.raises(PlanError):
        artifacts.bytecode("IToken")


def test_unknown_artifact_rejected(artifacts: ArtifactStore) -> None:
    with pytest.raises(PlanError):
        artifacts.bytecode("Nope")


def test_ambiguous_artifact_rejected(artifacts: ArtifactStore) -> None:
    other = artifacts.root / "other"
    other.mkdir()
    (other / "Token.json").write_text(json.dumps({"bytecode": "0x6003"}), encoding="utf-8")
    with pytest.raises(PlanError):
        artifacts.bytecode("Token")


def test_plan_from_dict_builds_every_step_kind(artifacts: ArtifactStore) -> None:
    plan = plan_from_dict(
        {
            "name": "demo",
            "params": {"DELAY": 60},
            "steps": [
                {"preset": "Multisig", "value": {"param": "MULTISIG"}},
                {
                    "create": "Timelock",
                    "artifact": "Timelock",
                    "args": [["address", {"ref": "Multisig"}], ["uint256", {"param": "DELAY"}]],
                },
                {"create": "WHBAR", "bytecode": "0x60", "existing_param": "WHBAR_ADDRESS"},
                {"query": "WHBAR (HTS)", "target": {"ref": "WHBAR"}, "function": "TOKEN_ID"},
                {"call": "transferOwnership", "target": {"ref": "Timelock"},
                 "args": [["address", {"ref": "Multisig"}]], "description": "Hand over Timelock"},
                {"grant_role": "FUNDER", "target": {"ref": "Timelock"}, "account": {"ref": "Multisig"}},
                {"renounce_role": "DEFAULT_ADMIN", "target": {"ref": "Timelock"},
                 "account": {"param": "deployer"}},
                {"approve": {"ref": "WHBAR"}},
                {"unpause": {"ref": "Timelock"}, "when": "START_VESTING"},
            ],
        },
        artifacts,
    )

    assert plan.name == "demo"
    assert plan.params == {"DELAY": 60}
    assert [s.key for s in plan.steps] == [
        "Multisig",
        "Timelock",
        "WHBAR",
        "WHBAR (HTS)",
        "Hand over Timelock",
        "Grant FUNDER to Multisig on Timelock",
        "Renounce DEFAULT_ADMIN from %deployer on Timelock",
        "Approve WHBAR",
        "Unpause Timelock",
    ]
    assert [s.kind for s in plan.steps][:4] == [StepKind.VALUE] * 4
    assert plan.steps[1].depends_on == ("Multisig",)
    assert plan.steps[3].depends_on == ("WHBAR",)
    assert plan.steps[-1].when == "START_VESTING"


def test_value_objects() -> None:
    plan = plan_from_dict(
        {"steps": [{"preset": "X", "value": {"param": "P", "default": "d"}}]}
    )
    assert plan.name == "plan"
    assert plan.steps[0].key == "X"


@pytest.mark.parametrize(
    "steps, message",
    [
        ([], "non-empty"),
        ([{"create": "A"}], "Step #1"),
        ([{"create": "A", "bytecode": "0x1", "query": "B"}], "exactly one"),
        ([{"bogus": 1}], "exactly one"),
        ([{"call": "f", "target": {"nope": 1}}], "Unsupported value"),
        ([{"call": "f", "target": "0x1", "args": [["address"]]}], "expected [type, value]"),
        ([{"query": "Q", "function": "f"}], "invalid definition"),
        ([{"create": "A", "artifact": "A"}], "no artifacts directory"),
        ([{"create": "A", "bytecode": "0x1"}, {"create": "A", "bytecode": "0x2"}], "Duplicate"),
    ],
)
def test_malformed_plans_rejected(steps, message) -> None:
    with pytest.raises(PlanError) as excinfo:
        plan_from_dict({"steps": steps})
    assert message in str(excinfo.value)


def test_load_plan_from_file(tmp_path: Path) -> None:
    path = tmp_path / "mini.json"
    path.write_text(json.dumps({"steps": [{"create": "A", "bytecode": "0x1"}]}), encoding="utf-8")

    plan = load_plan(path)

    assert plan.name == "mini"
    assert len(plan) == 1


def test_load_plan_rejects_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{", encoding="utf-8")
    with pytest.raises(PlanError):
        load_plan(path)


def test_load_plan_rejects_missing_file(tmp_path: Path) -> None:
    with pytest.raises(PlanError):
        load_plan(tmp_path / "missing.json")


def test_example_plan_is_valid(tmp_path: Path) -> None:
    data = json.loads(EXAMPLE_PLAN.read_text(encoding="utf-8"))
    artifacts_root = tmp_path / "artifacts"
    artifacts_root.mkdir()
    for step in data["steps"]:
        if "artifact" in step:
            name = step["artifact"]
            (artifacts_root / f"{name}.json").write_text(
                json.dumps({"bytecode": "0x60"}), encoding="utf-8"
            )

    plan = load_plan(EXAMPLE_PLAN, ArtifactStore(artifacts_root))

    keys = [s.key for s in plan.steps]
    assert "Timelock" in keys
    assert len(keys) == len(set(keys))


def test_plan_from_dict_builds_account_transact_and_queue_steps() -> None:
    plan = plan_from_dict(
        {
            "steps": [
                {"create_account": "Vesting Bot", "existing_param": "BOT",
                 "initial_balance": {"param": "BOT_BALANCE", "default": 0}},
                {"preset": "Multisig", "value": {"param": "MULTISIG", "default": {"param": "deployer"}}},
                {"transact": "Pair", "target": {"ref": "Factory"}, "function": "createPair",
                 "returns": "address", "gas": 2900000,
                 "args": [["address", {"ref": "A"}], ["address", {"ref": "B"}]]},
                {"queue_transaction": "setPendingAdmin(address)", "timelock": {"ref": "Timelock"},
                 "target": {"ref": "Timelock"}, "args": [["address", {"ref": "Governor"}]],
                 "delay": {"param": "DELAY"}, "description": "Queue Governor as admin"},
            ],
        }
    )

    bot, multisig, pair, queued = plan.steps
    assert bot.label == "Create account Vesting Bot"
    assert multisig.key == "Multisig"
    assert pair.kind is StepKind.VALUE
    assert pair.depends_on == ("Factory", "A", "B")
    assert queued.is_action
    assert queued.key == "Queue Governor as admin"
    assert queued.depends_on == ("Timelock", "Governor")


def test_nested_param_default_is_parsed() -> None:
    plan = plan_from_dict(
        {"steps": [{"preset": "Multisig", "value": {"param": "MULTISIG", "default": {"param": "deployer"}}}]}
    )
    step = plan.steps[0]
    ctx = RunContext(
        environment="testnet",
        client=StubChainClient(),
        values=MappingProxyType({}),
        params=MappingProxyType({"deployer": "0xD"}),
    )
    assert step.run(ctx)() == "0xD"


def test_example_plan_covers_full_deployment(tmp_path: Path) -> None:
    artifacts_root = tmp_path / "artifacts"
    artifacts_root.mkdir()
    data = json.loads(EXAMPLE_PLAN.read_text(encoding="utf-8"))
    for step in data["steps"]:
        if "artifact" in step:
            (artifacts_root / f"{step['artifact']}.json").write_text(
                json.dumps({"bytecode": "0x60"}), encoding="utf-8"
            )

    plan = load_plan(EXAMPLE_PLAN, ArtifactStore(artifacts_root))
    keys = [s.key for s in plan.steps]

    for expected in (
        "Vesting Bot",
        "PangolinFactory",
        "PangolinRouter",
        "Pair PNG/WHBAR (Contract)",
        "RewardFundingForwarder (PangoChef)",
        "PangolinStakingPositions",
        "SSS NFT (HTS)",
        "EmissionDiversionFromPangoChefToPangolinStakingPositions",
        "Governor Assistant",
        "Governor",
        "Queue Governor as pending Timelock admin",
        "Initialize emission diversion pool on PangoChef",
        "Approve RewardFundingForwarder (PangoChef)",
        "Approve EmissionDiversionFromPangoChefToPangolinStakingPositions",
    ):
        assert expected in keys
    # every reference points at an earlier value step
    seen = set()
    for step in plan.steps:
        assert set(step.depends_on) <= seen, step.key
        if not step.is_action:
            seen.add(step.key)
