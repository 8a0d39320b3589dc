"""
Pytest configuration for IRM Fusion Viewer backend tests
"""
import sys
import os
import base64
import pytest
import numpy as np

# Add backend to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


@pytest.fixture
def sequential_array():
    """(2, 3, 4) array holding 0..23 in row-major order"""
    return np.arange(24, dtype=np.uint8).reshape(2, 3, 4)


@pytest.fixture
def sequential_volume(sequential_array):
    from irmviewer.models.volume import Volume
    return Volume.from_array(sequential_array)


@pytest.fixture
def make_irm_payload():
    """Build an upload-irm style response carrying a Base64 voxel buffer"""
    def _make(array, name="brain.nii.gz"):
        array = np.ascontiguousarray(array, dtype=np.uint8)
        return {
            "type": "IRM",
            "nom_fichier": name,
            "shape": list(array.shape),
            "data_b64": base64.b64encode(array.tobytes()).decode("ascii"),
        }
    return _make


@pytest.fixture
def make_mrsi_payload():
    """Build an upload-mrsi style response; ``voxel_map_all`` is indexed [z][y][x]"""
    def _make(array, name="mrsi.nii.gz"):
        array = np.asarray(array)
        return {
            "type": "MRSI",
            "nom": name,
            "voxel_map_all": np.transpose(array, (2, 1, 0)).tolist(),
        }
    return _make


@pytest.fixture
def brain_array():
    """(8, 6, 4) IRM-like volume with distinct values per voxel"""
    return (np.arange(8 * 6 * 4) % 251 + 1).astype(np.uint8).reshape(8, 6, 4)


@pytest.fixture
def make_metabolite_payload():
    """Build a metabolite map entry; ``voxel_map_all`` is indexed [z][x][y]"""
    def _make(array):
        return {"voxel_map_all": np.transpose(np.asarray(array), (2, 0, 1)).tolist()}
    return _make
