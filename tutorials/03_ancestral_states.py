# %% [markdown]
# # Ancestral leaflet sizes
#
# The leaflet size of an ancestor is predicted by its expected value given
# the sizes of the living species, under the Brownian motion fitted to the
# data. The uncertainty of the prediction grows with the distance from the
# sampled species.

# %%
import os

from PhyNetPCM import (Report, read_network, read_trait_table, phylolm,
                       ancestral_state_reconstruction,
                       ancestral_state_reconstruction_bm, plot_network)
from PhyNetPCM.Settings import SITE_DIRECTORY

DATA = os.path.join("tutorials", "data")
report = Report("Ancestral state reconstruction")

net = read_network(os.path.join(DATA, "calibrated_network.tre"))
species = read_trait_table(os.path.join(DATA, "traits_species.csv"))

# %% [markdown]
# ## Intercept-only model
#
# With no predictor, the model has a single mean: the value at the root.

# %%
fit = phylolm("leaflet_size ~ 1", species, net)
print(fit)
states = ancestral_state_reconstruction(fit)
print(states.expectations())
print(states.predint())

report.add_markdown("## Intercept-only model")
report.add_text(fit)
report.add_table(states.expectations())
report.add_table(states.predint())

# %%
fig, _ = plot_network(net, node_labels = states.predint_plot(),
                      title = "95% prediction intervals")
report.add_figure(fig, caption = "Observed sizes at the tips, prediction \
intervals at internal nodes")
fig, _ = plot_network(net, node_labels = states.expectations_plot(),
                      title = "Expected leaflet sizes")
report.add_figure(fig)

# %% [markdown]
# ## Accounting for measurement error
#
# Species means come from 2 or 3 individuals. With the within-species model,
# the tip values are not taken as exact, and the reconstruction shrinks them.

# %%
fit_within = phylolm("leaflet_size ~ 1", species, net,
                     withinspecies_var = True, y_mean_std = True)
states_within = ancestral_state_reconstruction(fit_within)
print(states_within.predint())

report.add_markdown("## Accounting for measurement error")
report.add_table(states_within.predint())

# %% [markdown]
# ## Known parameters
#
# When the root value and rate are known (from a previous study, or to test a
# hypothesis), the reconstruction uses them directly.

# %%
values = dict(zip(species["tipNames"], species["leaflet_size"]))
states_known = ancestral_state_reconstruction_bm(net, values, mu = 5.0,
                                                 sigma2 = fit.sigma2_phylo)
print(states_known.expectations())

report.add_markdown("## Known parameters (root value 5)")
report.add_table(states_known.expectations())

# %%
report.to_html(os.path.join(SITE_DIRECTORY, "03_ancestral_states.html"))
