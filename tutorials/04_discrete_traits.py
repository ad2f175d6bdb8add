# %% [markdown]
# # Evolution of a discrete trait
#
# Species are classified as lowland or highland from their elevation. How
# fast do lineages move between the two zones, and in which zone did the
# ancestors live?

# %%
import os

from PhyNetPCM import (Report, read_network, read_trait_table,
                       add_binary_trait, fitdiscrete, lrtest,
                       discrete_ancestral_states, plot_discrete_states)
from PhyNetPCM.Settings import SITE_DIRECTORY

DATA = os.path.join("tutorials", "data")
report = Report("Discrete trait evolution")

net = read_network(os.path.join(DATA, "calibrated_network.tre"))
species = read_trait_table(os.path.join(DATA, "traits_species.csv"))

# %% [markdown]
# ## A binary trait
#
# Species above 1000 m are "highland".

# %%
species = add_binary_trait(species, "elevation", 1000.0,
                           ("lowland", "highland"), "zone")
zones = species[["tipNames", "zone"]]
print(zones)

report.add_markdown("## A binary trait")
report.add_table(zones)

# %% [markdown]
# ## Equal rates and all rates different
#
# The ER model has one rate for both directions, the ARD model one rate per
# direction. The network likelihood averages the likelihoods of the trees it
# displays, weighted by the inheritance probabilities.

# %%
fit_er = fitdiscrete(net, "ER", zones)
print(fit_er)
fit_ard = fitdiscrete(net, "ARD", zones)
print(fit_ard)
comparison = lrtest(fit_er, fit_ard)
print(comparison)

report.add_markdown("## Equal rates and all rates different")
report.add_text(fit_er)
report.add_text(fit_ard)
report.add_table(comparison)

# %% [markdown]
# ## Ancestral zones
#
# Posterior probabilities of each zone at every node, under the ER model.

# %%
posteriors = discrete_ancestral_states(fit_er)
print(posteriors.round(3))
fig, _ = plot_discrete_states(net, posteriors, "zone",
                              title = "Ancestral zones (ER)")

report.add_markdown("## Ancestral zones")
report.add_table(posteriors)
report.add_figure(fig, caption = "Posterior probability of each zone")

# %%
report.to_html(os.path.join(SITE_DIRECTORY, "04_discrete_traits.html"))
