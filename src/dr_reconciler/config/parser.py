"""YAML and environment configuration loader."""

import copy
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import ValidationError

from dr_reconciler.config.models import ReconcilerConfig, default_policies

# Environment variable -> (section, field)
ENV_OVERRIDES = {
    "DRPC_NAMESPACE": ("drpc", "namespace"),
    "DRPC_NAME": ("drpc", "name"),
    "PROTECTED_NAMESPACE": ("drpc", "protected_namespace"),
    "ARGOCD_APP_NAME": ("argo", "app_name"),
    "ARGOCD_APP_NAMESPACE": ("argo", "app_namespace"),
    "HUB_CLUSTER": ("clusters", "hub"),
    "PRIMARY_CLUSTER": ("clusters", "primary"),
    "SECONDARY_CLUSTER": ("clusters", "secondary"),
    "KUBECONFIG_DIR": ("clusters", "kubeconfig_dir"),
    "MIN_BUNDLE_SIZE": ("certificates", "precheck_min_bundle_size"),
    "MIN_CERTIFICATES": ("certificates", "min_certificates"),
}

# Applied to every job policy
POLICY_ENV_OVERRIDES = {
    "MAX_ATTEMPTS": "max_attempts",
    "SLEEP_INTERVAL": "interval_seconds",
}

TRUE_VALUES = ("1", "true", "yes", "on")


class ConfigValidationError(Exception):
    """Exception raised when configuration validation fails."""

    def __init__(self, message: str, errors: Optional[List[Dict]] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(self.message)

    def __str__(self) -> str:
        """Format validation errors for display."""
        if not self.errors:
            return self.message

        error_lines = [self.message, ""]
        for error in self.errors:
            location = " -> ".join(str(loc) for loc in error.get("loc", []))
            msg = error.get("msg", "Unknown error")
            error_lines.append(f"  - {location}: {msg}")

        return "\n".join(error_lines)


class Config:
    """Configuration manager: YAML file, then environment overrides."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to a YAML configuration file; defaults only when None
        """
        self.config_path = Path(config_path) if config_path else None
        self.data: Dict[str, Any] = {}
        self.settings: Optional[ReconcilerConfig] = None

    def load(self, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """Load, override and validate configuration.

        Args:
            environ: Environment mapping; os.environ when None

        Returns:
            Self for method chaining

        Raises:
            ConfigValidationError: If configuration is invalid
            FileNotFoundError: If the configuration file doesn't exist
        """
        environ = os.environ if environ is None else environ

        data: Dict[str, Any] = {}
        if self.config_path is not None:
            if not self.config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_path}")
            try:
                with open(self.config_path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigValidationError(f"Failed to parse YAML: {e}")
            if not isinstance(data, dict):
                raise ConfigValidationError("Configuration root must be a mapping")

        errors: List[Dict] = []
        data = self._apply_environment(data, environ, errors)
        self.data = data

        errors.extend(self.validate())
        if errors:
            raise ConfigValidationError(
                f"Configuration validation failed with {len(errors)} error(s)",
                errors,
            )

        self.settings = ReconcilerConfig(**self.data)
        return self

    def validate(self) -> List[Dict]:
        """Validate the merged configuration against the schema.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        jobs = self.data.get("jobs")
        if jobs is not None and not isinstance(jobs, dict):
            errors.append({"loc": ["jobs"], "msg": "Jobs must be a dictionary of job name to policy"})
            return errors

        try:
            ReconcilerConfig(**self.data)
        except ValidationError as e:
            for error in e.errors():
                errors.append({"loc": list(error["loc"]), "msg": error["msg"]})
        return errors

    def _apply_environment(
        self,
        data: Dict[str, Any],
        environ: Mapping[str, str],
        errors: List[Dict]
    ) -> Dict[str, Any]:
        """Overlay environment variables on the file configuration."""
        data = copy.deepcopy(data)

        for var, (section, field) in ENV_OVERRIDES.items():
            value = environ.get(var)
            if value:
                section_data = data.setdefault(section, {}) or {}
                section_data[field] = value
                data[section] = section_data

        jobs = data.get("jobs")
        if jobs is None or isinstance(jobs, dict):
            data["jobs"] = self._merge_job_policies(jobs or {})
            for var, field in POLICY_ENV_OVERRIDES.items():
                value = environ.get(var)
                if not value:
                    continue
                try:
                    number = float(value) if field == "interval_seconds" else int(value)
                except ValueError:
                    errors.append({"loc": ["env", var], "msg": f"Expected a number, got '{value}'"})
                    continue
                for policy in data["jobs"].values():
                    if isinstance(policy, dict):
                        policy[field] = number

        if environ.get("DRY_RUN"):
            data["dry_run"] = environ["DRY_RUN"].strip().lower() in TRUE_VALUES
        if environ.get("LOG_LEVEL"):
            data["log_level"] = environ["LOG_LEVEL"].strip().lower()

        return data

    @staticmethod
    def _merge_job_policies(jobs: Dict[str, Any]) -> Dict[str, Any]:
        """Partial job policies in the file inherit the job's defaults."""
        merged = {name: policy.model_dump() for name, policy in default_policies().items()}
        for name, policy in jobs.items():
            if isinstance(policy, dict):
                merged[name] = {**merged.get(name, {}), **policy}
            else:
                merged[name] = policy
        return merged

    def get_settings(self) -> ReconcilerConfig:
        """Loaded settings.

        Raises:
            ConfigValidationError: If load() has not been called
        """
        if self.settings is None:
            raise ConfigValidationError("Configuration has not been loaded")
        return self.settings
