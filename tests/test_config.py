import pytest
from pydantic import ValidationError

from antfit.config.load import load_config
from antfit.config.schemas import Config


def _write(tmp_path, text):
    p = tmp_path / "cfg.toml"
    p.write_text(text)
    return p


MINIMAL = """
[io]
input_path = "events.h5"
output_path = "out.h5"
"""


def test_defaults(tmp_path):
    cfg = load_config(_write(tmp_path, MINIMAL))
    assert cfg.setup.name == "EtapOmegaG"
    assert cfg.fit.fit_z_vertex is True
    assert cfg.fit.z_vertex_sigma == 3.0
    assert cfg.fit.kinfit_max_iterations == 10
    assert cfg.fit.treefit_max_iterations == 15
    assert cfg.selection.treefit_max_fits == 4
    assert cfg.io.adapter == {"kind": "hdf5"}
    assert cfg.promptrandom.prompt is None


def test_sections_and_overrides(tmp_path):
    text = MINIMAL + """
[run]
max_events = 50
diagnostics_level = 0

[promptrandom]
prompt = [[-3, 3]]

[selection]
anti_prob_max = 0.1
"""
    cfg = load_config(_write(tmp_path, text), {"run": {"max_events": 5}, "fit": {"fit_z_vertex": False}})
    assert cfg.run.max_events == 5
    assert cfg.run.diagnostics_level == 0
    assert cfg.fit.fit_z_vertex is False
    assert cfg.promptrandom.prompt == [[-3.0, 3.0]]
    assert cfg.selection.anti_prob_max == 0.1


@pytest.mark.parametrize("section", [
    "[run]\ndiagnostics_level = 3",
    "[run]\nmax_events = 0",
    "[fit]\nz_vertex_sigma = -1.0",
    "[fit]\ntreefit_max_iterations = 0",
    "[promptrandom]\nrandom = [[10, 5]]",
    "[uncertainty]\nmodel = \"fancy\"",
    "[sim]\nbeam_energy_range = [1600.0, 1450.0]",
])
def test_invalid_values(tmp_path, section):
    with pytest.raises(ValidationError):
        load_config(_write(tmp_path, MINIMAL + section + "\n"))


def test_io_required():
    with pytest.raises(ValidationError):
        Config()
