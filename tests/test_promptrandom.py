import pytest

from antfit.config.errors import ConfigurationError
from antfit.config.setups import get_setup
from antfit.physics.promptrandom import Case, PromptRandomWindow


def _window():
    return PromptRandomWindow(prompt=[(-7, 7)], random=[(-65, -10), (10, 65)])


def test_classify_half_open_ranges():
    w = _window()
    assert w.classify(-7.0) is Case.Prompt
    assert w.classify(6.999) is Case.Prompt
    assert w.classify(7.0) is Case.Outside
    assert w.classify(10.0) is Case.Random
    assert w.classify(-10.0) is Case.Outside
    assert w.classify(65.0) is Case.Outside
    assert w.classify(-100.0) is Case.Outside


def test_weights():
    w = _window()
    assert w.ratio == pytest.approx(14.0 / 110.0)
    w.set_time(0.0)
    assert w.fill_weight() == 1.0
    w.set_time(-30.0)
    assert w.state is Case.Random
    assert w.fill_weight() == pytest.approx(-14.0 / 110.0)
    w.set_time(100.0)
    assert w.fill_weight() == 0.0


def test_flat_background_subtracts_to_zero():
    w = _window()
    total = 0.0
    for k in range(13000):
        w.set_time((k + 0.5) * 0.01 - 65.0)
        total += w.fill_weight()
    assert total == pytest.approx(0.0, abs=1e-9)


def test_overlapping_ranges_rejected():
    w = _window()
    with pytest.raises(ConfigurationError):
        w.add_random_range((5, 12))
    with pytest.raises(ConfigurationError):
        w.add_prompt_range((3, 3))
    with pytest.raises(ConfigurationError):
        PromptRandomWindow(prompt=[(-5, 5)], random=[(-10, 0)])
    with pytest.raises(ConfigurationError):
        PromptRandomWindow(prompt=[(-5, 5), (0, 10)])


def test_from_setup():
    w = PromptRandomWindow.from_setup(get_setup("Setup_2014_EPT"))
    assert w.prompt_width == 5.0
    assert w.random_width == 90.0
    w2 = PromptRandomWindow.from_setup(get_setup("EtapOmegaG", prompt=[[-2, 2]]))
    assert w2.prompt_ranges == [(-2.0, 2.0)]
    with pytest.raises(ConfigurationError):
        get_setup("Setup_1999")
