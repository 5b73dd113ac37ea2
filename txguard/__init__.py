# SPDX-License-Identifier: MIT
"""txguard: idempotent submission and tracking of blockchain transactions."""

__version__ = "0.1.0"
