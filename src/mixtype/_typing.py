"""Shared type aliases for the mixtype package."""

import numpy as np
import pandas as pd

# Array-like inputs accepted by the public API.
ArrayLike = np.ndarray | pd.DataFrame | pd.Series | list

# A response-type specification: one label or family per coordinate.
TypesLike = list | tuple | np.ndarray
