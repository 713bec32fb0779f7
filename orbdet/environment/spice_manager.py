import glob
import os
import warnings

import numpy as np
import spiceypy as spice
from spiceypy.utils.exceptions import SpiceyError


class SpiceManager:
    """
    A singleton-like handle on the SPICE kernel pool.

    Only the queries used by the environment models are exposed: body states,
    gravitational parameters and frame transformations.
    """
    _instance = None
    _kernels_loaded = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(SpiceManager, cls).__new__(cls)
        return cls._instance

    @property
    def kernels_loaded(self) -> bool:
        return self._kernels_loaded

    def load_standard_kernels(self, base_dir: str = 'data', verbose: bool = True) -> int:
        """
        Loads the SPICE kernels (.bsp, .tpc, .tls, .tf) found in a directory.

        Args:
            base_dir (str): Directory searched for kernel files.
            verbose (bool): Print every loaded kernel.

        Returns:
            int: Number of kernels loaded.
        """
        if self._kernels_loaded:
            spice.kclear()
            self._kernels_loaded = False

        if verbose:
            print(f"Loading SPICE kernels from {os.path.abspath(base_dir)}...")

        count = 0
        for pattern in ['*.bsp', '*.tpc', '*.tls', '*.tf']:
            for kernel in sorted(glob.glob(os.path.join(base_dir, pattern))):
                spice.furnsh(kernel)
                count += 1
                if verbose:
                    print(f"Loaded: {os.path.basename(kernel)}")

        if count == 0:
            warnings.warn(f"No SPICE kernels were found in '{base_dir}'.")
        else:
            self._kernels_loaded = True
        return count

    def get_body_state(self, target: str, observer: str, et: float, frame: str = 'J2000') -> np.ndarray:
        """
        State of a target body relative to an observer, without aberration corrections.

        Args:
            target (str): Name of target body (e.g., 'MOON').
            observer (str): Name of observing body (e.g., 'EARTH').
            et (float): Ephemeris Time (seconds past J2000).
            frame (str): Reference frame.

        Returns:
            numpy.ndarray: 6-element state vector [x, y, z, vx, vy, vz] in km and km/s.
        """
        try:
            state, _ = spice.spkezr(target, et, frame, 'NONE', observer)
        except SpiceyError as e:
            raise RuntimeError(f"SPICE Error getting state for {target} wrt {observer}: {e}") from e
        return np.asarray(state, dtype=float)

    def get_gravitational_parameter(self, body: str) -> float:
        """
        Gravitational parameter (GM) of a body from the loaded PCK kernels [km^3/s^2].
        """
        try:
            _, values = spice.bodvrd(body, "GM", 1)
        except SpiceyError as e:
            raise RuntimeError(f"Could not determine GM for body '{body}'. Check pck kernel. Error: {e}") from e
        return float(values[0])

    def get_coord_transform(self, from_frame: str, to_frame: str, et: float) -> np.ndarray:
        """
        Returns the 3x3 rotation matrix from one frame to another at a given epoch.
        """
        try:
            return np.asarray(spice.pxform(from_frame, to_frame, et))
        except SpiceyError as e:
            raise RuntimeError(f"SPICE Error getting rotation from {from_frame} to {to_frame}: {e}") from e

    def get_state_transform(self, from_frame: str, to_frame: str, et: float) -> np.ndarray:
        """
        Returns the 6x6 state transformation matrix from one frame to another at a given epoch.
        """
        try:
            return np.asarray(spice.sxform(from_frame, to_frame, et))
        except SpiceyError as e:
            raise RuntimeError(f"SPICE Error getting state transform from {from_frame} to {to_frame}: {e}") from e


# Global accessibility
spice_manager = SpiceManager()
