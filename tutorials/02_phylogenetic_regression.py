# %% [markdown]
# # Phylogenetic regression on a network
#
# Does leaflet size depend on elevation? Species share part of their history,
# so their trait values are not independent: the residuals of the regression
# are modelled as a Brownian motion along the calibrated network.

# %%
import os

from PhyNetPCM import (Report, read_network, read_trait_table, check_taxa,
                       subset_to_network, species_summary, phylolm, lrtest,
                       ftest, regressor_hybrid, plot_regression)
from PhyNetPCM.Settings import SITE_DIRECTORY

DATA = os.path.join("tutorials", "data")
report = Report("Phylogenetic regression")

net = read_network(os.path.join(DATA, "calibrated_network.tre"))

# %% [markdown]
# ## Matching the data to the network
#
# The table has one row per individual. Before fitting anything, compare its
# species names with the network tips.

# %%
individuals = read_trait_table(os.path.join(DATA, "traits_individuals.csv"),
                               "species")
taxa = check_taxa(net, individuals, "species")
print(taxa)

report.add_markdown("## Matching the data to the network")
report.add_text(taxa)

# %% [markdown]
# Two names are typos ("californca", "Deserti"), and "giganteus" was not
# sampled for the gene trees. Fix the typos, and drop the species that is not
# in the network.

# %%
individuals["species"] = individuals["species"].replace(
    {"californca" : "californica", "Deserti" : "deserti"})
individuals = subset_to_network(individuals, net, "species")
taxa = check_taxa(net, individuals, "species")
print(taxa)
report.add_text(taxa)

# %% [markdown]
# ## Species means
#
# Elevation is recorded per species, so it is carried into the summary table.

# %%
species = species_summary(individuals, "species", ["leaflet_size"])
print(species)
report.add_table(species)

# %% [markdown]
# ## Brownian motion and Pagel's lambda
#
# Pagel's lambda scales down the shared history between species. lambda = 1
# is the Brownian motion model; lambda = 0 means no phylogenetic signal in the
# residuals.

# %%
fit_bm = phylolm("leaflet_size ~ elevation", species, net,
                 tip_column = "species")
print(fit_bm)

fit_lambda = phylolm("leaflet_size ~ elevation", species, net,
                     tip_column = "species", model = "lambda")
print(fit_lambda)

comparison = lrtest(fit_bm, fit_lambda)
print(comparison)

report.add_markdown("## Brownian motion and Pagel's lambda")
report.add_text(fit_bm)
report.add_text(fit_lambda)
report.add_table(comparison)
fig, _ = plot_regression(fit_bm, species, "elevation", "leaflet_size",
                         title = "Leaflet size against elevation")
report.add_figure(fig, caption = "Species means and the BM regression line")

# %% [markdown]
# ## Variation within species
#
# Species means are estimated with error. The within-species model fits the
# individuals directly, with one variance along the network and one between
# individuals of the same species. The same fit is obtained from the species
# summary table, when it has the columns leaflet_size_sd and leaflet_size_n.

# %%
fit_within = phylolm("leaflet_size ~ elevation", individuals, net,
                     tip_column = "species", withinspecies_var = True)
print(fit_within)

fit_within_summary = phylolm("leaflet_size ~ elevation", species, net,
                             tip_column = "species", withinspecies_var = True,
                             y_mean_std = True)
print(fit_within_summary.coef)

report.add_markdown("## Variation within species")
report.add_text(fit_within)

# %% [markdown]
# ## A shift at the reticulation
#
# Hybrid species can be larger (or smaller) than both parents. The predictor
# shift_H1 is the proportion of each species' genome inherited through H1:
# its coefficient is the shift in leaflet size at the hybridization.

# %%
shifts = regressor_hybrid(net, "species")
species_shift = species.merge(shifts, on = "species")
fit_shift = phylolm("leaflet_size ~ elevation + shift_H1", species_shift, net,
                    tip_column = "species")
print(fit_shift.coeftable())
print(ftest(fit_bm, fit_shift))

report.add_markdown("## A shift at the reticulation")
report.add_table(fit_shift.coeftable())
report.add_table(ftest(fit_bm, fit_shift))

# %%
report.to_html(os.path.join(SITE_DIRECTORY, "02_phylogenetic_regression.html"))
