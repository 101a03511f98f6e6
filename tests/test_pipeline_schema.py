"""Tests for pipeline schema and loader."""

import json
import textwrap

import pytest
from pydantic import ValidationError

from shipline.errors import PipelineValidationError
from shipline.pipeline.loader import load_pipeline, parse_pipeline
from shipline.pipeline.schema import PipelineSpec, PipelineStep


def _minimal_pipeline_data() -> dict:
    return {
        "apiVersion": "shipline/v1",
        "kind": "Pipeline",
        "metadata": {"name": "deploy"},
        "spec": {
            "steps": [
                {"name": "install", "run": "npm ci"},
            ]
        },
    }


def _step(name: str, depends_on: list[str] | None = None) -> PipelineStep:
    return PipelineStep(name=name, run="true", depends_on=depends_on or [])


class TestPipelineStep:
    def test_defaults(self):
        s = PipelineStep(name="build", run="npm run build")
        assert s.inputs == []
        assert s.defaults == {}
        assert s.enabled_when is None
        assert s.depends_on == []
        assert s.continue_on_error is None
        assert s.timeout_seconds == 600
        assert s.shell is False
        assert s.env == {}
        assert s.secrets == {}
        assert s.working_dir is None

    def test_if_alias(self):
        s = PipelineStep.model_validate({"name": "a", "run": "true", "if": "{{ deploy }}"})
        assert s.enabled_when == "{{ deploy }}"

    def test_field_name_also_accepted(self):
        s = PipelineStep(name="a", run="true", enabled_when="false")
        assert s.enabled_when == "false"

    def test_empty_command_rejected(self):
        with pytest.raises(ValidationError):
            PipelineStep(name="a", run="")

    def test_bad_step_name_rejected(self):
        with pytest.raises(ValidationError):
            PipelineStep(name="has space", run="true")

    def test_frozen(self):
        s = PipelineStep(name="a", run="true")
        with pytest.raises(ValidationError):
            s.run = "false"  # type: ignore[misc]


class TestPipelineSpec:
    def test_valid_simple(self):
        spec = PipelineSpec(steps=[_step("a")])
        assert len(spec.steps) == 1
        assert spec.error_strategy == "fail-fast"
        assert spec.timeout_seconds is None

    def test_requires_a_step(self):
        with pytest.raises(ValidationError):
            PipelineSpec(steps=[])

    def test_valid_with_dependencies(self):
        spec = PipelineSpec(steps=[_step("a"), _step("b", ["a"])])
        assert spec.step("b").depends_on == ["a"]

    def test_duplicate_step_names(self):
        with pytest.raises(ValidationError, match="Duplicate step name"):
            PipelineSpec(steps=[_step("a"), _step("a")])

    def test_unknown_dependency(self):
        with pytest.raises(ValidationError, match="unknown step"):
            PipelineSpec(steps=[_step("a", ["nonexistent"])])

    def test_self_dependency(self):
        with pytest.raises(ValidationError, match="depends on itself"):
            PipelineSpec(steps=[_step("a", ["a"])])

    def test_cycle_detection_simple(self):
        with pytest.raises(ValidationError, match="cycle"):
            PipelineSpec(steps=[_step("a", ["b"]), _step("b", ["a"])])

    def test_cycle_detection_three_nodes(self):
        with pytest.raises(ValidationError, match="cycle"):
            PipelineSpec(steps=[_step("a", ["c"]), _step("b", ["a"]), _step("c", ["b"])])

    def test_forward_dependency(self):
        with pytest.raises(ValidationError, match="declared after it"):
            PipelineSpec(steps=[_step("deploy", ["build"]), _step("build")])

    def test_continues_on_error_resolution(self):
        spec = PipelineSpec(
            steps=[
                _step("a"),
                PipelineStep(name="b", run="true", continue_on_error=True),
            ],
        )
        assert spec.continues_on_error(spec.step("a")) is False
        assert spec.continues_on_error(spec.step("b")) is True

    def test_continue_strategy_is_step_default(self):
        spec = PipelineSpec(
            steps=[
                _step("a"),
                PipelineStep(name="b", run="true", continue_on_error=False),
            ],
            error_strategy="continue",
        )
        assert spec.continues_on_error(spec.step("a")) is True
        assert spec.continues_on_error(spec.step("b")) is False


class TestParsePipeline:
    def test_minimal(self):
        pipe = parse_pipeline(_minimal_pipeline_data())
        assert pipe.metadata.name == "deploy"
        assert pipe.spec.steps[0].run == "npm ci"

    def test_wrong_api_version(self):
        data = _minimal_pipeline_data()
        data["apiVersion"] = "shipline/v0"
        with pytest.raises(PipelineValidationError) as exc_info:
            parse_pipeline(data)
        assert exc_info.value.rule == "schema"
        assert exc_info.value.step is None

    def test_schema_error_names_step(self):
        data = _minimal_pipeline_data()
        data["spec"]["steps"].append({"name": "build"})
        with pytest.raises(PipelineValidationError) as exc_info:
            parse_pipeline(data)
        assert exc_info.value.step == "build"
        assert exc_info.value.rule == "schema"

    def test_duplicate_reports_step_and_rule(self):
        data = _minimal_pipeline_data()
        data["spec"]["steps"].append({"name": "install", "run": "yarn"})
        with pytest.raises(PipelineValidationError) as exc_info:
            parse_pipeline(data)
        assert exc_info.value.step == "install"
        assert exc_info.value.rule == "duplicate-name"

    def test_unknown_dependency_rule(self):
        data = _minimal_pipeline_data()
        data["spec"]["steps"].append({"name": "build", "run": "x", "depends_on": ["nope"]})
        with pytest.raises(PipelineValidationError) as exc_info:
            parse_pipeline(data)
        assert exc_info.value.step == "build"
        assert exc_info.value.rule == "unknown-dependency"

    def test_cycle_rule(self):
        data = _minimal_pipeline_data()
        data["spec"]["steps"] = [
            {"name": "a", "run": "x", "depends_on": ["b"]},
            {"name": "b", "run": "x", "depends_on": ["a"]},
        ]
        with pytest.raises(PipelineValidationError) as exc_info:
            parse_pipeline(data)
        assert exc_info.value.rule == "cyclic-dependency"
        assert exc_info.value.step == "a"

    def test_forward_dependency_rule(self):
        data = _minimal_pipeline_data()
        data["spec"]["steps"] = [
            {"name": "deploy", "run": "x", "depends_on": ["build"]},
            {"name": "build", "run": "x"},
        ]
        with pytest.raises(PipelineValidationError) as exc_info:
            parse_pipeline(data)
        assert exc_info.value.rule == "forward-dependency"
        assert exc_info.value.step == "deploy"


class TestLoadPipeline:
    def test_load_valid_yaml(self, tmp_path):
        path = tmp_path / "pipeline.yaml"
        path.write_text(
            textwrap.dedent("""\
            apiVersion: shipline/v1
            kind: Pipeline
            metadata:
              name: web-deploy
            spec:
              inputs:
                environment: preview
              steps:
                - name: install
                  run: npm ci
                - name: deploy
                  run: vercel deploy --prebuilt --target={{ environment }}
                  depends_on: [install]
                  if: "{{ environment }} != skip"
                  secrets:
                    VERCEL_TOKEN: vercel-token
        """)
        )
        pipe = load_pipeline(path)
        assert pipe.metadata.name == "web-deploy"
        deploy = pipe.spec.step("deploy")
        assert deploy.enabled_when == "{{ environment }} != skip"
        assert deploy.secrets == {"VERCEL_TOKEN": "vercel-token"}
        assert pipe.spec.inputs == {"environment": "preview"}

    def test_yaml_scalars_become_strings(self, tmp_path):
        path = tmp_path / "pipeline.yaml"
        path.write_text(
            textwrap.dedent("""\
            apiVersion: shipline/v1
            kind: Pipeline
            metadata:
              name: api
            spec:
              inputs:
                replicas: 3
              env:
                CI: true
              steps:
                - name: migrate
                  run: supabase db push
                  if: false
                - name: serve
                  run: node server.js
                  if: true
                  defaults:
                    port: 8080
                    ratio: 0.5
                  env:
                    DEBUG: no
        """)
        )
        pipe = load_pipeline(path)
        assert pipe.spec.step("migrate").enabled_when == "false"
        serve = pipe.spec.step("serve")
        assert serve.enabled_when == "true"
        assert serve.defaults == {"port": "8080", "ratio": "0.5"}
        assert serve.env == {"DEBUG": "false"}
        assert pipe.spec.inputs == {"replicas": "3"}
        assert pipe.spec.env == {"CI": "true"}

    def test_null_default_still_rejected(self, tmp_path):
        path = tmp_path / "pipeline.yaml"
        path.write_text(
            textwrap.dedent("""\
            apiVersion: shipline/v1
            kind: Pipeline
            metadata:
              name: api
            spec:
              steps:
                - name: serve
                  run: node server.js
                  defaults:
                    port:
        """)
        )
        with pytest.raises(PipelineValidationError) as exc_info:
            load_pipeline(path)
        assert exc_info.value.rule == "schema"
        assert exc_info.value.step == "serve"

    def test_load_json(self, tmp_path):
        path = tmp_path / "pipeline.json"
        path.write_text(json.dumps(_minimal_pipeline_data()))
        assert load_pipeline(path).metadata.name == "deploy"

    def test_missing_file(self, tmp_path):
        with pytest.raises(PipelineValidationError, match="Cannot read") as exc_info:
            load_pipeline(tmp_path / "missing.yaml")
        assert exc_info.value.rule == "io"

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("steps: [unclosed\n")
        with pytest.raises(PipelineValidationError, match="Invalid YAML") as exc_info:
            load_pipeline(path)
        assert exc_info.value.rule == "syntax"

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(PipelineValidationError, match="Expected a YAML mapping"):
            load_pipeline(path)

    def test_error_mentions_path(self, tmp_path):
        path = tmp_path / "dup.yaml"
        data = _minimal_pipeline_data()
        data["spec"]["steps"].append({"name": "install", "run": "yarn"})
        path.write_text(json.dumps(data))
        with pytest.raises(PipelineValidationError, match="dup.yaml"):
            load_pipeline(path)
