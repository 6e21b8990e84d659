from __future__ import annotations

"""Builders for translating build.yml plus invocation overrides into a BuildSpec."""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import yaml

from .errors import BuildConfigError
from .models import BuildInput, BuildRequest, BuildSpec, Channel


@dataclass
class BuildConfig:
    """Parsed contents of a build configuration file."""

    image: str
    run_path: str
    run_args: list[str] = field(default_factory=list)
    params: dict[str, str] = field(default_factory=dict)


def _coerce_param(value: Any) -> str:
    """Render a YAML scalar the way the orchestrator expects param strings."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _require_string(document: Mapping[str, Any], key: str, path: str) -> str:
    value = document.get(key)
    if not isinstance(value, str) or not value:
        raise BuildConfigError("%s: %s must be a non-empty string" % (path, key))
    return value


def load_build_config(path: str) -> BuildConfig:
    """Load and validate a build.yml file."""
    try:
        with open(path, "r", encoding="utf-8") as fp:
            document = yaml.safe_load(fp)
    except FileNotFoundError:
        raise BuildConfigError("build configuration not found: %s" % path) from None
    except OSError as exc:
        raise BuildConfigError("could not read %s: %s" % (path, exc)) from exc
    except yaml.YAMLError as exc:
        raise BuildConfigError("invalid YAML in %s: %s" % (path, exc)) from exc

    if not isinstance(document, Mapping):
        raise BuildConfigError("%s: expected a mapping at the top level" % path)

    image = _require_string(document, "image", path)

    run = document.get("run")
    if not isinstance(run, Mapping):
        raise BuildConfigError("%s: run must be a mapping" % path)
    run_path = _require_string(run, "path", "%s: run" % path)

    raw_args = run.get("args") or []
    if not isinstance(raw_args, Sequence) or isinstance(raw_args, str):
        raise BuildConfigError("%s: run.args must be a list" % path)

    raw_params = document.get("params") or {}
    if not isinstance(raw_params, Mapping):
        raise BuildConfigError("%s: params must be a mapping" % path)

    return BuildConfig(
        image=image,
        run_path=run_path,
        run_args=[str(arg) for arg in raw_args],
        params={str(name): _coerce_param(value) for name, value in raw_params.items()},
    )


def apply_param_overrides(
    params: Mapping[str, str], environment: Mapping[str, str]
) -> dict[str, str]:
    """Override declared params with same-named environment variables.

    Only params already declared are considered; an empty value still
    overrides.
    """
    merged = dict(params)
    for name in params:
        if name in environment:
            merged[name] = environment[name]
    return merged


class BuildSpecBuilder:
    """Converts a BuildRequest and an allocated Channel into a BuildSpec."""

    @staticmethod
    def build(request: BuildRequest, channel: Channel) -> BuildSpec:
        """Build the spec submitted for this invocation."""
        config = load_build_config(str(request.config_path))
        return BuildSpecBuilder.from_config(config, request, channel)

    @staticmethod
    def from_config(
        config: BuildConfig, request: BuildRequest, channel: Channel
    ) -> BuildSpec:
        environment = request.environment if request.environment is not None else {}
        return BuildSpec(
            image=config.image,
            run_path=config.run_path,
            run_args=tuple([*config.run_args, *request.arguments]),
            params=apply_param_overrides(config.params, environment),
            inputs=(
                BuildInput(
                    name=request.input_name,
                    source={"uri": channel.fetch_uri},
                ),
            ),
            privileged=request.privileged,
        )
