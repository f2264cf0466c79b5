"""Analysis pipeline for binomlab.

Pipeline phases (in order):
  01_overdispersion — Synthesize replicate counts, quantify overdispersion
  02_wald           — Frequentist intervals (Wald, Wilson, replicate t) + coverage
  03_posterior      — Bayesian posterior for p via PyMC/nutpie, compared to Wald

Shared infrastructure at root: run_context.py, report.py

Uses a PEP 302 meta-path finder so that ``from analysis.wald import X``
transparently loads ``analysis.02_wald.wald`` (numbered directories are not
valid module names).
"""

from __future__ import annotations

import importlib
import sys
import types
from importlib.abc import MetaPathFinder
from importlib.machinery import ModuleSpec

_MODULE_MAP: dict[str, str] = {
    "overdispersion": "01_overdispersion",
    "overdispersion_report": "01_overdispersion",
    "wald": "02_wald",
    "wald_report": "02_wald",
    "posterior": "03_posterior",
    "posterior_data": "03_posterior",
    "posterior_report": "03_posterior",
    "model_spec": "03_posterior",
}


class _AliasLoader:
    """Loader that imports the real module and registers it under the alias."""

    def __init__(self, real_name: str) -> None:
        self.real_name = real_name

    def create_module(self, spec: ModuleSpec) -> types.ModuleType | None:
        return None

    def exec_module(self, module: types.ModuleType) -> None:
        real = importlib.import_module(self.real_name)
        module.__dict__.update(real.__dict__)
        module.__file__ = real.__file__
        module.__loader__ = real.__loader__
        if hasattr(real, "__path__"):
            module.__path__ = real.__path__


class _AnalysisRedirectFinder(MetaPathFinder):
    """Redirect ``analysis.<name>`` imports to ``analysis.<NN_phase>.<name>``."""

    def find_spec(
        self,
        fullname: str,
        path: object = None,
        target: types.ModuleType | None = None,
    ) -> ModuleSpec | None:
        parts = fullname.split(".")
        if len(parts) == 2 and parts[0] == "analysis" and parts[1] in _MODULE_MAP:
            name = parts[1]
            real = f"analysis.{_MODULE_MAP[name]}.{name}"
            return ModuleSpec(fullname, _AliasLoader(real))
        return None


sys.meta_path.insert(0, _AnalysisRedirectFinder())
