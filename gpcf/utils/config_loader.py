"""
YAML Configuration Loading

Builds covariance functions and gradient-check settings from YAML:

    kernel:
      magn_sigma2: 1.0
      length_scale: [1.0, 2.0]
      magn_sigma2_prior: {type: sqrtunif}
      length_scale_prior:
        type: gamma
        shape: 2.0
        inv_scale: 1.0
        inv_scale_prior: {type: logunif}
      metric:                       # optional, owns the length-scale
        type: euclidean
        components: [[0, 1], [2]]
        length_scale: [1.0, 0.5]
      selected_variables: [0, 2]    # optional
    gradient_check:
      step: 1.0e-6
      rtol: 1.0e-5
      atol: 1.0e-6

A prior is a mapping with a ``type`` key, a bare type name, ``fixed``
(parameter held constant), or null (no prior, parameter not learned). A
missing prior key keeps the default prior.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from ..gp.exceptions import InvalidParameterError
from ..gp.kernels import SquaredExponential
from ..gp.metrics import EuclideanMetric, Metric
from ..gp.priors import FIXED, PRIOR_TYPES, Prior
from .gradcheck import GradientCheckConfig

logger = logging.getLogger(__name__)

METRIC_TYPES = {"euclidean": EuclideanMetric}

_KERNEL_KEYS = {
    "magn_sigma2",
    "length_scale",
    "magn_sigma2_prior",
    "length_scale_prior",
    "metric",
    "selected_variables",
}


def load_config(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a YAML file into a dict (empty file gives an empty dict)."""
    with open(path) as f:
        cfg = yaml.safe_load(f)
    if cfg is None:
        return {}
    if not isinstance(cfg, dict):
        raise InvalidParameterError(f"{path}: top level must be a mapping, got {type(cfg).__name__}")
    logger.debug("Loaded configuration from %s: sections %s", path, sorted(cfg))
    return cfg


def build_prior(spec) -> Optional[Prior]:
    """
    Build a prior from its configuration entry.

    Keys ending in ``_prior`` are built recursively as hyperpriors.
    """
    if spec is None:
        return None
    if isinstance(spec, str):
        spec = {"type": spec}
    if not isinstance(spec, dict) or "type" not in spec:
        raise InvalidParameterError(f"Prior must be a type name or a mapping with 'type', got {spec!r}")

    kwargs = dict(spec)
    prior_type = str(kwargs.pop("type")).lower()
    if prior_type == "fixed":
        return FIXED
    if prior_type not in PRIOR_TYPES:
        raise InvalidParameterError(f"Unknown prior type '{prior_type}'. Known: {sorted(PRIOR_TYPES)}")

    for key, value in list(kwargs.items()):
        if key.endswith("_prior"):
            kwargs[key] = build_prior(value)
        else:
            kwargs[key] = float(value)

    try:
        return PRIOR_TYPES[prior_type](**kwargs)
    except TypeError as exc:
        raise InvalidParameterError(f"Bad parameters for prior '{prior_type}': {exc}") from exc


def build_metric(spec) -> Optional[Metric]:
    """Build a metric from its configuration entry."""
    if spec is None:
        return None
    if not isinstance(spec, dict):
        raise InvalidParameterError(f"Metric must be a mapping, got {spec!r}")

    kwargs = dict(spec)
    metric_type = str(kwargs.pop("type", "euclidean")).lower()
    if metric_type not in METRIC_TYPES:
        raise InvalidParameterError(f"Unknown metric type '{metric_type}'. Known: {sorted(METRIC_TYPES)}")
    if "length_scale_prior" in kwargs:
        kwargs["length_scale_prior"] = build_prior(kwargs["length_scale_prior"])

    try:
        return METRIC_TYPES[metric_type](**kwargs)
    except TypeError as exc:
        raise InvalidParameterError(f"Bad parameters for metric '{metric_type}': {exc}") from exc


def build_kernel(spec: Optional[Dict[str, Any]]) -> SquaredExponential:
    """Build a squared exponential kernel from the ``kernel`` section."""
    spec = dict(spec or {})
    unknown = set(spec) - _KERNEL_KEYS
    if unknown:
        raise InvalidParameterError(f"Unknown kernel configuration keys: {sorted(unknown)}")

    kwargs: Dict[str, Any] = {}
    if "magn_sigma2" in spec:
        kwargs["magn_sigma2"] = float(spec["magn_sigma2"])
    if "length_scale" in spec:
        kwargs["length_scale"] = spec["length_scale"]
    for key in ("magn_sigma2_prior", "length_scale_prior"):
        if key in spec:
            kwargs[key] = build_prior(spec[key])
    if spec.get("metric") is not None:
        kwargs["metric"] = build_metric(spec["metric"])
    if spec.get("selected_variables") is not None:
        kwargs["selected_variables"] = [int(i) for i in spec["selected_variables"]]

    kernel = SquaredExponential(**kwargs)
    logger.debug("Built %r", kernel)
    return kernel


def build_gradient_check_config(spec: Optional[Dict[str, Any]]) -> GradientCheckConfig:
    spec = spec or {}
    return GradientCheckConfig(**{k: float(v) for k, v in spec.items()})


def kernel_from_yaml(path: Union[str, Path]) -> SquaredExponential:
    """Load a YAML file and build the kernel from its ``kernel`` section."""
    return build_kernel(load_config(path).get("kernel"))
