"""
UHD skills: one ``uhd`` command grouping every image skill.

Each skill is also installed as its own script (``uhd-convert``, ``uhd-gainmap``, ...), so
``uhd convert batch ./photos -f avif`` and ``uhd-convert batch ./photos -f avif`` are the same.
Output of one skill can be piped into another with ``--json`` and ``--stdin``:

    uhd analyze batch ./photos --filter sdr --json | uhd sdr-to-hdr batch --stdin -y
"""

from cyclopts import App

from uhd_skills import analyze, convert, gainmap, optimize, sdr_to_hdr, upscale
from uhd_skills.t2i import cli as t2i


__version__ = "0.1.0"
app = App(
    name="uhd",
    version=__version__,
    help="UHD image skills: convert, analyze, optimize, HDR, gain maps, upscaling and generation.",
)

app.command(convert.app, name="convert")
app.command(gainmap.app, name="gainmap")
app.command(analyze.app, name="analyze")
app.command(optimize.app, name="optimize")
app.command(sdr_to_hdr.app, name="sdr-to-hdr")
app.command(upscale.app, name="upscale")
app.command(t2i.app, name="t2i")


if __name__ == "__main__":
    app()
