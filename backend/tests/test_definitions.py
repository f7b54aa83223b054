import copy
import json

import pytest

from repcoach.config import Settings
from repcoach.definitions import (
    BUILTIN_DIR,
    DefinitionRegistry,
    load_definition,
    load_definition_file,
)
from repcoach.schemas.exercise import (
    CombineFeature,
    Comparator,
    DefinitionError,
    ExerciseDefinition,
    ViolationPolicy,
)

BUILTIN_IDS = [
    "bicep_curl",
    "lateral_raise",
    "lateral_trunk_tilt",
    "plank",
    "seated_bicep_curl",
    "squat",
]


class TestBundledCatalog:
    def test_all_bundled_definitions_load(self):
        registry = DefinitionRegistry.from_directory(BUILTIN_DIR)
        assert registry.ids() == BUILTIN_IDS

    def test_default_adds_configured_directory(self, tmp_path, curl_data):
        (tmp_path / "custom.json").write_text(json.dumps(curl_data))
        registry = DefinitionRegistry.default(Settings(definitions_dir=str(tmp_path)))
        assert "test_curl" in registry
        assert len(registry) == len(BUILTIN_IDS) + 1

    def test_bicep_curl_values(self):
        definition = DefinitionRegistry.from_directory(BUILTIN_DIR).get("bicep_curl")
        assert definition.start_stage == "down"
        assert definition.min_rep_interval_ms == 1200
        assert definition.on_violation is ViolationPolicy.FREEZE
        hold_edge = definition.stage("up_moving").transitions[0]
        assert hold_edge.confirm == 55
        assert hold_edge.hold_ms == 350
        abort_edge = definition.stage("up_moving").transitions[1]
        assert abort_edge.to == "down"
        assert not abort_edge.counts_rep

    def test_squat_knee_is_combined(self):
        definition = load_definition_file(BUILTIN_DIR / "squat.json")
        knee = next(f for f in definition.features if f.name == "knee")
        assert isinstance(knee, CombineFeature)
        assert knee.dependencies == ["left_knee", "right_knee"]

    def test_lateral_raise_calibrates_neck(self):
        definition = load_definition_file(BUILTIN_DIR / "lateral_raise.json")
        assert definition.calibrated_features == ["neck_length"]

    def test_plank_has_no_count_announcement(self):
        definition = load_definition_file(BUILTIN_DIR / "plank.json")
        assert definition.rep_announcement is None
        assert definition.stage("hold").hold_target_ms == 10000

    def test_trunk_tilt_tallies_each_side(self):
        definition = load_definition_file(BUILTIN_DIR / "lateral_trunk_tilt.json")
        assert definition.tally_names == ["right", "left"]
        tilt = next(f for f in definition.features if f.name == "trunk_tilt")
        assert tilt.function == "signed_tilt"


class TestRegistry:
    def test_unknown_id(self):
        with pytest.raises(DefinitionError, match="Unknown exercise"):
            DefinitionRegistry().get("burpee")

    def test_duplicate_id(self, curl_definition):
        registry = DefinitionRegistry([curl_definition])
        with pytest.raises(DefinitionError, match="Duplicate"):
            registry.register(curl_definition)
        registry.register(curl_definition, replace=True)
        assert len(registry) == 1

    def test_missing_directory(self, tmp_path):
        with pytest.raises(DefinitionError):
            DefinitionRegistry.from_directory(tmp_path / "nope")

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(DefinitionError, match="Cannot read"):
            load_definition_file(path)


def _broken(curl_data, mutate):
    data = copy.deepcopy(curl_data)
    mutate(data)
    return data


class TestValidation:
    def test_valid(self, curl_data):
        definition = load_definition(curl_data)
        assert isinstance(definition, ExerciseDefinition)
        assert definition.smoothing_windows(5) == {"elbow": 5, "shoulder": 5}

    @pytest.mark.parametrize("mutate", [
        # Unknown joint
        lambda d: d["features"][0].update(joints=["right_shoulder", "right_elbow", "right_tail"]),
        # Dangling transition target
        lambda d: d["stages"][2]["transitions"][0].update(to="lockout"),
        # Transition on an unknown feature
        lambda d: d["stages"][0]["transitions"][0].update(feature="knee"),
        # Missing start stage
        lambda d: d.update(start_stage="warmup"),
        # Unreachable stage
        lambda d: d["stages"].append({"name": "orphan"}),
        # Duplicate stage name
        lambda d: d["stages"].append({"name": "rest"}),
        # Confirm looser than enter for "lt"
        lambda d: d["stages"][1]["transitions"][0].update(confirm=65),
        # Timed edge with a feature condition
        lambda d: d["stages"][1]["transitions"][0].update(after_ms=500),
        # Feature edge without thresholds
        lambda d: d["stages"][0]["transitions"][0].pop("enter"),
        # Check on an unknown feature
        lambda d: d["checks"][0].update(feature="hip"),
        # Symmetry check with an unknown side
        lambda d: d["checks"].append({"kind": "symmetry", "name": "even", "left": "elbow", "right": "left_elbow",
                                      "max_diff": 10, "message": "Even out"}),
        # Check scoped to an unknown stage
        lambda d: d["checks"][0].update(stages=["lockout"]),
        # Range check without bounds
        lambda d: d["checks"][0].pop("max_value"),
        # Blocking check cannot void reps
        lambda d: d["checks"][0].update(voids_rep=True),
        # Baseline check without calibration
        lambda d: d["checks"].append({"kind": "baseline_deviation", "name": "hike", "feature": "shoulder",
                                      "max_deviation": 5, "message": "Shoulder down"}),
        # Combined feature referencing a later feature
        lambda d: d["features"].insert(0, {"kind": "combine", "name": "both", "op": "mean",
                                           "of": ["elbow", "shoulder"]}),
        # Custom function with the wrong number of joints
        lambda d: d["features"].append({"kind": "custom", "name": "up", "function": "height_above",
                                        "joints": ["right_wrist"]}),
        # Unregistered custom function
        lambda d: d["features"].append({"kind": "custom", "name": "up", "function": "levitation",
                                        "joints": ["right_wrist"]}),
        # Rep-counting self-loop on the start stage
        lambda d: d["stages"][0]["transitions"].append({"to": "rest", "feature": "elbow", "comparator": "gt",
                                                        "enter": 170}),
        # Tally on an edge that does not return to the start stage
        lambda d: d["stages"][0]["transitions"][0].update(tally="left"),
        # Tally on an abort edge
        lambda d: d["stages"][2]["transitions"][0].update(tally="left", counts_rep=False),
        # Non-positive hold target
        lambda d: d["stages"][0].update(hold_target_ms=0),
        # Unknown field
        lambda d: d.update(cooldown_ms=100),
        # Window out of range
        lambda d: d["features"][0].update(window=0),
    ])
    def test_rejected_at_load_time(self, curl_data, mutate):
        with pytest.raises(DefinitionError):
            load_definition(_broken(curl_data, mutate))

    def test_timed_edge(self, curl_data):
        def mutate(d):
            d["stages"][2]["transitions"] = [{"to": "rest", "after_ms": 800}]

        definition = load_definition(_broken(curl_data, mutate))
        edge = definition.stage("hold").transitions[0]
        assert edge.is_timed
        assert not edge.needs_hold

    def test_non_counting_self_loop_allowed(self, curl_data):
        def mutate(d):
            d["stages"][0]["transitions"].append(
                {"to": "rest", "feature": "elbow", "comparator": "gt", "enter": 170, "counts_rep": False}
            )

        definition = load_definition(_broken(curl_data, mutate))
        assert not definition.stage("rest").transitions[1].counts_rep

    def test_tally_names_in_declaration_order(self, curl_data):
        def mutate(d):
            d["stages"][2]["transitions"] = [
                {"to": "rest", "feature": "elbow", "comparator": "gt", "enter": 150, "tally": "right"},
                {"to": "rest", "feature": "elbow", "comparator": "lt", "enter": 20, "tally": "left"},
                {"to": "rest", "after_ms": 5000, "tally": "right"},
            ]

        definition = load_definition(_broken(curl_data, mutate))
        assert definition.tally_names == ["right", "left"]
        assert load_definition(curl_data).tally_names == []


def test_comparator_strictness():
    assert Comparator.LT.at_least_as_strict(55, 60)
    assert not Comparator.LT.at_least_as_strict(65, 60)
    assert Comparator.GE.at_least_as_strict(165, 155)
    assert Comparator.GT.holds(151, 150)
    assert not Comparator.GT.holds(150, 150)
    assert Comparator.LE.holds(95, 95)
