from halo.engine import run

run()
