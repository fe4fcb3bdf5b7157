# ColorCal chart-based color calibration package
#
# Subpackages:
#   colorcal.core    : charts, color spaces, fitting, recipes, batch correction
#   colorcal.pipeline: command-line steps (build recipe, batch correct)
#   colorcal.eval    : fit diagnostics and plots
