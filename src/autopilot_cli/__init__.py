# Autopilot — Staged Terminal Demo Runner
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Autopilot core package.

Plays back a YAML script of stages, one action per keypress.
"""
from .kernel import Kernel as Kernel  # noqa: F401 (re-export)
