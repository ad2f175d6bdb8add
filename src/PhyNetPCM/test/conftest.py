import matplotlib

# figures are rendered off screen during tests
matplotlib.use("Agg")
