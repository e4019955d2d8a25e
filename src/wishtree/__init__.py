# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Wishtree - wish and proposal lifecycle with hierarchical token distribution.

Users post wishes, attach proposals and sub-wishes to them, and send token
support that is split up the tree by a fixed percentage ladder.

Layers:
  wishtree.core.transitions   status state machine
  wishtree.core.distribution  ladder split, payout caps, equal split
  wishtree.core.cascade       close a node with its open descendants
  wishtree.core.service       one unit of work per user intent

CLI entry point: ``wishtree``
"""

__version__ = "0.1.0"

from . import (
    core as core,
)
