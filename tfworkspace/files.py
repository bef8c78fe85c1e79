"""Producing the Terraform configuration and state files of a workspace."""

from __future__ import annotations

import base64
import copy
import hashlib
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

from .timeouts import OperationTimeouts, insert_timeouts_meta

ANNOTATION_KEY_EXTERNAL_NAME = "crossplane.io/external-name"
ANNOTATION_KEY_PRIVATE_RAW_ATTRIBUTE = "upjet.crossplane.io/provider-meta"

MAIN_TF_FILE = "main.tf.json"
TF_STATE_FILE = "terraform.tfstate"

REDACTED = "REDACTED"

ERR_CHECK_IF_STATE_EMPTY = "cannot check whether the state is empty"
ERR_INSERT_TIMEOUTS = "cannot insert timeouts metadata to private raw"
ERR_UNMARSHAL_ATTR = "cannot unmarshal state attributes"
ERR_UNMARSHAL_TF_STATE = "cannot unmarshal tfstate file"
ERR_FMT_NON_STRING = "cannot work with a non-string id: %s"
ERR_READ_MAIN_TF = "cannot read main.tf.json file"

_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _marshal(obj: Any, sort_keys: bool = True) -> bytes:
    text = json.dumps(obj, sort_keys=sort_keys, separators=(",", ":"), ensure_ascii=False)
    for char, escaped in _ESCAPES.items():
        text = text.replace(char, escaped)
    return text.encode("utf-8")


def _sprint(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def _pair(key: str, value: str) -> str:
    return f"{_quote(key)}:{_quote(value)}"


def sorted_key_value_pairs(parent: str, mapping: Mapping[str, Any] | None) -> list[str]:
    """Flatten a configuration into quoted key/value pairs ordered by key."""
    result: list[str] = []
    for key in sorted(mapping or {}):
        value = mapping[key]
        name = parent + key
        if value is None:
            continue
        if isinstance(value, Mapping):
            result.extend(sorted_key_value_pairs(name + ".", value))
        elif isinstance(value, (list, tuple)) and all(isinstance(e, str) for e in value):
            result.append(_pair(name, ",".join(value)))
        elif isinstance(value, (list, tuple)) and all(isinstance(e, Mapping) for e in value):
            nested = [
                pair
                for index, element in enumerate(value)
                for pair in sorted_key_value_pairs(f"{parent}{key}[{index}].", element)
            ]
            result.append(_pair(name, ",".join(nested)))
        else:
            result.append(_pair(name, _sprint(value)))
    return result


def to_provider_handle(configuration: Mapping[str, Any] | None) -> str:
    """Hash a provider configuration into a scheduler handle."""
    joined = ",".join(sorted_key_value_pairs("", configuration))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


@dataclass
class ProviderRequirement:
    """Source and version of the Terraform provider a workspace needs."""

    source: str = ""
    version: str = ""


@dataclass
class Setup:
    """Terraform version, provider requirement and provider configuration."""

    version: str = ""
    requirement: ProviderRequirement = field(default_factory=ProviderRequirement)
    configuration: dict[str, Any] | None = None
    client_metadata: dict[str, str] | None = None
    scheduler: Any = None

    def map(self) -> dict[str, Any]:
        """The setup as a plain mapping."""
        return {
            "version": self.version,
            "requirement": {
                "source": self.requirement.source,
                "version": self.requirement.version,
            },
            "configuration": self.configuration,
            "client_metadata": self.client_metadata,
        }

    def filter_sensitive_information(self, text: str) -> str:
        """Replace every non-empty string configuration value in text."""
        for value in (self.configuration or {}).values():
            if isinstance(value, str) and value:
                text = text.replace(value, REDACTED)
        return text


@dataclass
class InstanceObjectStateV4:
    """One instance of a resource in a version 4 Terraform state."""

    schema_version: int = 0
    attributes_raw: bytes | None = None
    private_raw: bytes | None = None

    def _to_obj(self) -> dict[str, Any]:
        obj: dict[str, Any] = {"schema_version": self.schema_version}
        if self.attributes_raw:
            obj["attributes"] = json.loads(self.attributes_raw)
        if self.private_raw:
            obj["private"] = base64.b64encode(self.private_raw).decode("ascii")
        return obj

    @classmethod
    def _from_obj(cls, obj: Any) -> InstanceObjectStateV4:
        if not isinstance(obj, dict):
            raise ValueError("resource instance is not a JSON object")
        attributes = obj.get("attributes")
        private = obj.get("private")
        return cls(
            schema_version=int(obj.get("schema_version") or 0),
            attributes_raw=None if attributes is None else _marshal(attributes, sort_keys=False),
            private_raw=None if not private else base64.b64decode(private, validate=True),
        )


@dataclass
class ResourceStateV4:
    """A resource in a version 4 Terraform state."""

    mode: str = ""
    type: str = ""
    name: str = ""
    provider: str = ""
    instances: list[InstanceObjectStateV4] = field(default_factory=list)

    def _to_obj(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "type": self.type,
            "name": self.name,
            "provider": self.provider,
            "instances": [instance._to_obj() for instance in self.instances],
        }

    @classmethod
    def _from_obj(cls, obj: Any) -> ResourceStateV4:
        if not isinstance(obj, dict):
            raise ValueError("resource is not a JSON object")
        return cls(
            mode=obj.get("mode") or "",
            type=obj.get("type") or "",
            name=obj.get("name") or "",
            provider=obj.get("provider") or "",
            instances=[
                InstanceObjectStateV4._from_obj(item) for item in obj.get("instances") or []
            ],
        )


@dataclass
class StateV4:
    """A version 4 Terraform state file."""

    version: int = 4
    terraform_version: str = ""
    serial: int = 1
    lineage: str = ""
    outputs: dict[str, Any] | None = None
    resources: list[ResourceStateV4] = field(default_factory=list)

    def to_json(self) -> bytes:
        """Serialize the state in Terraform's compact JSON form."""
        outputs = None if self.outputs is None else json.loads(_marshal(self.outputs))
        obj = {
            "version": self.version,
            "terraform_version": self.terraform_version,
            "serial": self.serial,
            "lineage": self.lineage,
            "outputs": outputs,
            "resources": [resource._to_obj() for resource in self.resources],
        }
        return _marshal(obj, sort_keys=False)

    @classmethod
    def from_json(cls, data: bytes | str) -> StateV4:
        """Parse a state file; raise ValueError if it is not a valid state."""
        obj = json.loads(data)
        if obj is None:
            return cls()
        if not isinstance(obj, dict):
            raise ValueError("state is not a JSON object")
        outputs = obj.get("outputs")
        if outputs is not None and not isinstance(outputs, dict):
            raise ValueError("state outputs are not a JSON object")
        return cls(
            version=int(obj.get("version") or 0),
            terraform_version=obj.get("terraform_version") or "",
            serial=int(obj.get("serial") or 0),
            lineage=obj.get("lineage") or "",
            outputs=outputs,
            resources=[ResourceStateV4._from_obj(item) for item in obj.get("resources") or []],
        )

    def get_attributes(self) -> bytes | None:
        """Raw attributes of the first instance of the first resource, if any."""
        if not self.resources or not self.resources[0].instances:
            return None
        return self.resources[0].instances[0].attributes_raw


def _name_as_identifier(parameters: dict[str, Any], external_name: str) -> None:
    parameters["name"] = external_name


def _external_name_as_id(
    external_name: str, parameters: dict[str, Any], setup: dict[str, Any]
) -> str:
    return external_name


@dataclass
class ExternalName:
    """How a resource's external name maps to its arguments and Terraform ID."""

    set_identifier_argument: Callable[[dict[str, Any], str], None] = _name_as_identifier
    get_id: Callable[[str, dict[str, Any], dict[str, Any]], str] = _external_name_as_id


@dataclass
class ResourceConfig:
    """Per-resource configuration relevant to the workspace files."""

    name: str = ""
    external_name: ExternalName = field(default_factory=ExternalName)
    operation_timeouts: OperationTimeouts = field(default_factory=OperationTimeouts)


@dataclass
class Terraformed:
    """A managed resource that is backed by a Terraform resource."""

    name: str = ""
    uid: str = ""
    resource_type: str = ""
    schema_version: int = 0
    annotations: dict[str, str] = field(default_factory=dict)
    deleted: bool = False
    parameters: dict[str, Any] = field(default_factory=dict)
    observation: dict[str, Any] = field(default_factory=dict)


def _external_name(resource: Terraformed) -> str:
    return resource.annotations.get(ANNOTATION_KEY_EXTERNAL_NAME, "")


class FileProducer:
    """Caches a resource's parameters and observation to write workspace files."""

    def __init__(
        self,
        resource: Terraformed,
        setup: Setup,
        directory: str | os.PathLike,
        config: ResourceConfig,
        ignore_changes: Sequence[str] = (),
    ) -> None:
        self.resource = resource
        self.setup = setup
        self.directory = Path(directory)
        self.config = config
        self.ignored = list(ignore_changes)
        parameters = copy.deepcopy(dict(resource.parameters))
        config.external_name.set_identifier_argument(parameters, _external_name(resource))
        self.parameters = parameters
        self.observation = copy.deepcopy(dict(resource.observation))

    def _provider_name(self) -> str:
        return self.setup.requirement.source.split("/")[-1]

    def _write(self, filename: str, data: bytes) -> None:
        fd = os.open(self.directory / filename, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)

    def write_main_tf(self) -> str:
        """Write main.tf.json with the desired state; return the provider handle."""
        lifecycle: dict[str, Any] = {"prevent_destroy": not self.resource.deleted}
        if self.ignored:
            lifecycle["ignore_changes"] = list(self.ignored)
        self.parameters["lifecycle"] = lifecycle

        timeouts = self.config.operation_timeouts.as_parameter()
        if timeouts:
            self.parameters["timeouts"] = timeouts

        provider = self._provider_name()
        main = {
            "terraform": {
                "required_providers": {
                    provider: {
                        "source": self.setup.requirement.source,
                        "version": self.setup.requirement.version,
                    }
                }
            },
            "provider": {provider: self.setup.configuration},
            "resource": {
                self.resource.resource_type: {self.resource.name: self.parameters}
            },
        }
        raw = _marshal(main)
        handle = to_provider_handle(self.setup.configuration)
        self._write(MAIN_TF_FILE, raw)
        return handle

    def ensure_tf_state(self, tf_id: str) -> None:
        """Write the Terraform state if none with a resource ID exists yet.

        Nothing is written while the resource is being deleted.
        """
        try:
            empty = self.is_state_empty()
        except ValueError as exc:
            raise ValueError(f"{ERR_CHECK_IF_STATE_EMPTY}: {exc}") from exc
        if not empty or self.resource.deleted:
            return
        base = {**self.parameters, **self.observation, "id": tf_id}
        attributes = _marshal(base)

        private_raw: bytes | None = None
        annotation = self.resource.annotations.get(ANNOTATION_KEY_PRIVATE_RAW_ATTRIBUTE)
        if annotation is not None:
            private_raw = annotation.encode("utf-8")
        try:
            private_raw = insert_timeouts_meta(private_raw, self.config.operation_timeouts)
        except ValueError as exc:
            raise ValueError(f"{ERR_INSERT_TIMEOUTS}: {exc}") from exc

        state = StateV4(
            terraform_version=self.setup.version,
            lineage=self.resource.uid,
            resources=[
                ResourceStateV4(
                    mode="managed",
                    type=self.resource.resource_type,
                    name=self.resource.name,
                    provider=(
                        f'provider["registry.terraform.io/{self.setup.requirement.source}"]'
                    ),
                    instances=[
                        InstanceObjectStateV4(
                            schema_version=self.resource.schema_version,
                            private_raw=private_raw,
                            attributes_raw=attributes,
                        )
                    ],
                )
            ],
        )
        self._write(TF_STATE_FILE, state.to_json())

    def is_state_empty(self) -> bool:
        """Whether the Terraform state lacks a resource with a non-empty ID.

        Raises ValueError if the state cannot be parsed or its ID is not a string.
        """
        try:
            data = (self.directory / TF_STATE_FILE).read_bytes()
        except FileNotFoundError:
            return True
        try:
            state = StateV4.from_json(data)
        except ValueError as exc:
            raise ValueError(f"{ERR_UNMARSHAL_TF_STATE}: {exc}") from exc
        raw = state.get_attributes()
        if raw is None:
            return True
        try:
            attributes = json.loads(raw)
        except ValueError as exc:
            raise ValueError(f"{ERR_UNMARSHAL_ATTR}: {exc}") from exc
        if attributes is None:
            return True
        if not isinstance(attributes, dict):
            raise ValueError(ERR_UNMARSHAL_ATTR)
        if "id" not in attributes:
            return True
        tf_id = attributes["id"]
        if not isinstance(tf_id, str):
            raise ValueError(ERR_FMT_NON_STRING % _sprint(tf_id))
        return tf_id == ""

    def need_provider_upgrade(self) -> bool:
        """Whether the existing main.tf.json pins another provider version."""
        try:
            data = (self.directory / MAIN_TF_FILE).read_bytes()
        except FileNotFoundError:
            return False
        try:
            main = json.loads(data)
        except ValueError as exc:
            raise ValueError(f"{ERR_READ_MAIN_TF}: {exc}") from exc
        if main is None:
            main = {}
        if not isinstance(main, dict):
            raise ValueError(ERR_READ_MAIN_TF)
        terraform = main.get("terraform") or {}
        if not isinstance(terraform, dict):
            raise ValueError(ERR_READ_MAIN_TF)
        providers = terraform.get("required_providers") or {}
        if not isinstance(providers, dict):
            raise ValueError(ERR_READ_MAIN_TF)
        provider = providers.get(self._provider_name())
        if not isinstance(provider, dict):
            raise ValueError("cannot get provider configuration")
        if "version" not in provider:
            raise ValueError("cannot get version")
        return provider["version"] != self.setup.requirement.version