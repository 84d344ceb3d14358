import pytest

from searchcli.reporting import reporting


def mgf_block(
    title: str | None = "spectrum",
    peaks: list[tuple[float, float]] | None = None,
    pepmass: float = 500.25,
    charge: str = "2+",
    rt: float | None = 60.0,
) -> str:
    """Text of a single MGF ion block.

    Parameters
    ----------

    title : str, optional
        Title of the spectrum, no TITLE line is written if None.

    peaks : list of (mz, intensity), optional
        Peaks of the spectrum, two default peaks if None.

    """
    if peaks is None:
        peaks = [(100.1, 10.0), (200.2, 20.0)]

    lines = ["BEGIN IONS"]
    if title is not None:
        lines.append(f"TITLE={title}")
    lines.append(f"PEPMASS={pepmass}")
    lines.append(f"CHARGE={charge}")
    if rt is not None:
        lines.append(f"RTINSECONDS={rt}")
    lines += [f"{mz} {intensity}" for mz, intensity in peaks]
    lines.append("END IONS")
    return "\n".join(lines) + "\n"


def write_mgf(path, blocks: list[str], header: str = "") -> str:
    """Write an MGF file from ion blocks, return its path as string."""
    with open(path, "w", newline="\n") as f:
        f.write(header)
        for block in blocks:
            f.write(block)
    return str(path)


def read_text(path) -> str:
    with open(path, newline="") as f:
        return f.read()


@pytest.fixture
def titled_mgf(tmp_path):
    """MGF file with three uniquely titled spectra."""
    return write_mgf(
        tmp_path / "run.mgf",
        [mgf_block(title=f"scan={i}", rt=10.0 * i) for i in range(1, 4)],
    )


@pytest.fixture(autouse=True)
def reset_logging():
    """Every test starts with an uninitialized root logger."""
    reporting.__is_initiated__ = False
    yield
    reporting.__is_initiated__ = False

