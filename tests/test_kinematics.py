import numpy as np
import pytest

import kinematics as kn


def test_get_kinematics():
    pt, phi, eta = kn.get_kinematics([1.0, 0.0, -1.0], [0.0, 2.0, -1.0], [0.0, 0.0, 1.0])
    assert pt == pytest.approx([1.0, 2.0, np.sqrt(2.0)])
    assert phi == pytest.approx([0.0, np.pi / 2, 5 * np.pi / 4])
    assert eta[:2] == pytest.approx([0.0, 0.0])
    assert eta[2] == pytest.approx(np.arcsinh(1.0 / np.sqrt(2.0)))


def test_beam_axis_has_no_eta():
    _, _, eta = kn.get_kinematics([0.0], [0.0], [3.0])
    assert np.isnan(eta[0])


def test_constrain_angle():
    assert kn.constrain_angle(-0.5) == pytest.approx(2 * np.pi - 0.5)
    assert kn.constrain_angle(7.0) == pytest.approx(7.0 - 2 * np.pi)
    assert kn.constrain_angle(4.0, -np.pi) == pytest.approx(4.0 - 2 * np.pi)


def test_find_bin():
    edges = [0.0, 1.0, 2.0, 5.0]
    assert kn.find_bin(edges, 0.0) == 0
    assert kn.find_bin(edges, 1.0) == 1
    assert kn.find_bin(edges, 4.99) == 2
    assert kn.find_bin(edges, 5.0) == -1
    assert kn.find_bin(edges, -0.1) == -1
    assert kn.find_bin(edges, np.nan) == -1
    assert kn.find_bin(edges, [0.5, 3.0, 7.0]).tolist() == [0, 2, -1]


def test_pt_mass_bin():
    assert kn.pt_mass_bin(3, 2, 14) == 31
    assert kn.pt_mass_bin(-1, 2, 14) == -1
    assert kn.pt_mass_bin(np.array([0, 5]), np.array([0, -1]), 14).tolist() == [0, -1]

    ipt, imass = kn.split_pt_mass_bin(np.array([31, 0, 13]), 14)
    assert ipt.tolist() == [3, 0, 13]
    assert imass.tolist() == [2, 0, 0]
