"""CRD manifest generation and apply."""

import hashlib
import json
import logging
from pathlib import Path

import yaml

from .registry import CRDRegistry

logger = logging.getLogger(__name__)

PRESERVE_UNKNOWN = "x-kubernetes-preserve-unknown-fields"

GENERIC_STATUS_SCHEMA = {
    "type": "object",
    "properties": {
        "phase": {"type": "string"},
        "observedGeneration": {"type": "integer"},
    },
    PRESERVE_UNKNOWN: True,
}


class OpenAPIConverter:
    """Convert pydantic schemas to structural OpenAPI v3 schemas for CRDs."""

    @staticmethod
    def convert_schema(pydantic_schema):
        defs = pydantic_schema.get("$defs", {})
        openapi_schema = {
            "type": "object",
            "properties": OpenAPIConverter._convert_properties(
                pydantic_schema.get("properties", {}), defs
            ),
        }
        if "required" in pydantic_schema:
            openapi_schema["required"] = pydantic_schema["required"]
        return openapi_schema

    @staticmethod
    def _convert_properties(properties, defs):
        return {
            name: OpenAPIConverter._convert_property(schema, defs)
            for name, schema in properties.items()
        }

    @staticmethod
    def _convert_property(prop_schema, defs):
        if "$ref" in prop_schema:
            def_name = prop_schema["$ref"].replace("#/$defs/", "")
            if def_name in defs:
                resolved = dict(defs[def_name])
                if "description" in prop_schema:
                    resolved["description"] = prop_schema["description"]
                return OpenAPIConverter._convert_property(resolved, defs)

        # Optional[X] renders as anyOf [X, null]
        if "anyOf" in prop_schema:
            variants = [v for v in prop_schema["anyOf"] if v.get("type") != "null"]
            if len(variants) == 1:
                merged = {**variants[0]}
                for key in ("description", "default"):
                    if key in prop_schema and prop_schema[key] is not None:
                        merged[key] = prop_schema[key]
                return OpenAPIConverter._convert_property(merged, defs)

        result = {}
        if "description" in prop_schema:
            result["description"] = prop_schema["description"]

        prop_type = prop_schema.get("type")
        if prop_type == "array":
            result["type"] = "array"
            if "items" in prop_schema:
                result["items"] = OpenAPIConverter._convert_property(
                    prop_schema["items"], defs
                )
            return result

        if prop_type == "object" and "properties" in prop_schema:
            result["type"] = "object"
            result["properties"] = OpenAPIConverter._convert_properties(
                prop_schema["properties"], defs
            )
            if "required" in prop_schema:
                result["required"] = prop_schema["required"]
            return result

        if prop_type in (None, "object"):
            # Free-form payloads such as embedded StatefulSet templates
            result["type"] = "object"
            result[PRESERVE_UNKNOWN] = True
            return result

        result["type"] = prop_type
        for key in ("default", "enum", "format", "minimum", "maximum"):
            if key in prop_schema:
                result[key] = prop_schema[key]
        if "exclusiveMinimum" in prop_schema:
            result["minimum"] = prop_schema["exclusiveMinimum"]
            result["exclusiveMinimum"] = True
        return result


class CRDManager:
    """Generates CRD manifests from registered models and applies them."""

    def __init__(self, output_dir=None):
        self.output_dir = Path(output_dir) if output_dir else Path("crds/generated")
        self.registry = CRDRegistry()
        self.converter = OpenAPIConverter()

    def generate_all_crds(self, force=False):
        """Write one YAML file per CRD plus a kustomization.

        Returns:
            bool: True if files were written, False if models were unchanged
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)

        current_hash = self._calculate_models_hash()
        hash_file = self.output_dir / ".models_hash"

        if not force and hash_file.exists():
            if hash_file.read_text().strip() == current_hash:
                logger.info("CRD models unchanged, skipping generation")
                return False

        crds = self.get_crds_as_dict()
        if not crds:
            logger.warning("No CRD models found to generate")
            return False

        generated_files = []
        for crd_name, crd_def in crds.items():
            filename = f"{crd_name}.yaml"
            with open(self.output_dir / filename, "w") as f:
                yaml.dump(crd_def, f, default_flow_style=False, sort_keys=False)
            generated_files.append(filename)
            logger.info(f"Generated CRD: {filename}")

        self._generate_kustomization(generated_files)
        hash_file.write_text(current_hash)

        logger.info(f"Generated {len(generated_files)} CRD files")
        return True

    def _status_schema(self, info):
        if info.status_model is None:
            return GENERIC_STATUS_SCHEMA
        schema = self.converter.convert_schema(info.status_model.model_json_schema())
        # Status is written piecewise by the controller
        schema.pop("required", None)
        return schema

    def _generate_crd_definition(self, info):
        """Render the CustomResourceDefinition for one registered model."""
        try:
            spec_schema = self.converter.convert_schema(info.model.model_json_schema())
        except Exception as e:
            raise ValueError(
                f"Failed to generate schema for {info.model.__name__}: {e}"
            ) from e

        version = {
            "name": info.version,
            "served": True,
            "storage": True,
            "schema": {
                "openAPIV3Schema": {
                    "type": "object",
                    "properties": {
                        "spec": spec_schema,
                        "status": self._status_schema(info),
                    },
                    "required": ["spec"],
                }
            },
            "subresources": {"status": {}},
        }
        if info.printer_columns:
            version["additionalPrinterColumns"] = info.printer_columns

        return {
            "apiVersion": "apiextensions.k8s.io/v1",
            "kind": "CustomResourceDefinition",
            "metadata": {"name": info.crd_name},
            "spec": {
                "group": info.group,
                "versions": [version],
                "scope": info.scope,
                "names": {
                    "plural": info.plural,
                    "singular": info.singular,
                    "kind": info.kind,
                    "shortNames": [info.singular[:2]],
                },
            },
        }

    def _generate_kustomization(self, filenames):
        kustomization = {
            "apiVersion": "kustomize.config.k8s.io/v1beta1",
            "kind": "Kustomization",
            "resources": sorted(filenames),
        }
        with open(self.output_dir / "kustomization.yaml", "w") as f:
            yaml.dump(kustomization, f, default_flow_style=False)

    def _calculate_models_hash(self):
        """Hash of all model schemas, used to skip regeneration."""
        self.registry.discover_models()
        model_data = {}
        for key, info in sorted(self.registry.get_all_models().items()):
            model_data[key] = {
                "schema": info.model.model_json_schema(),
                "status": info.status_model.model_json_schema() if info.status_model else None,
                "scope": info.scope,
            }
        model_json = json.dumps(model_data, sort_keys=True, default=str)
        return hashlib.sha256(model_json.encode()).hexdigest()

    def apply_crds_to_cluster(self, api=None):
        """Create or replace every CRD on the cluster.

        Args:
            api: ApiextensionsV1Api instance (created from the loaded config when omitted)

        Returns:
            int: number of CRDs applied
        """
        from kubernetes import client
        from kubernetes.client.exceptions import ApiException

        api = api or client.ApiextensionsV1Api()

        applied_count = 0
        for crd_name, crd_def in self.get_crds_as_dict().items():
            try:
                existing = api.read_custom_resource_definition(crd_name)
                crd_def["metadata"]["resourceVersion"] = existing.metadata.resource_version
                api.replace_custom_resource_definition(name=crd_name, body=crd_def)
                logger.info(f"Updated CRD: {crd_name}")
            except ApiException as e:
                if e.status != 404:
                    raise
                api.create_custom_resource_definition(body=crd_def)
                logger.info(f"Created CRD: {crd_name}")
            applied_count += 1

        logger.info(f"Applied {applied_count} CRDs to cluster")
        return applied_count

    def get_crds_as_dict(self):
        """Return all CRDs keyed by CRD name."""
        self.registry.discover_models()
        return {
            info.crd_name: self._generate_crd_definition(info)
            for info in self.registry.get_all_models().values()
        }

    def validate_generated_crds(self):
        """Check that generated files parse and look like CRDs."""
        crd_files = [
            f for f in self.output_dir.glob("*.yaml") if f.name != "kustomization.yaml"
        ]
        if not crd_files:
            logger.error("No CRD files found to validate")
            return False

        valid_count = 0
        for crd_file in crd_files:
            with open(crd_file, "r") as f:
                crd_def = yaml.safe_load(f)
            if not isinstance(crd_def, dict):
                logger.error(f"Invalid YAML in {crd_file}")
                continue
            if not all(k in crd_def for k in ("apiVersion", "kind", "metadata", "spec")):
                logger.error(f"Missing required fields in {crd_file}")
                continue
            if crd_def["kind"] != "CustomResourceDefinition":
                logger.error(f"Not a CRD: {crd_file}")
                continue
            valid_count += 1

        logger.info(f"Validated {valid_count}/{len(crd_files)} CRD files")
        return valid_count == len(crd_files)
