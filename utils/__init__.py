"""
Utility package setup.

Enables pandas Copy-on-Write globally so leaderboard frames built from the
result store never mutate shared column buffers.
"""

import pandas as pd

pd.options.mode.copy_on_write = True
