# %% [markdown]
# # Calibrating a network from gene trees
#
# The network topology below was inferred from a set of gene trees, but its
# edge lengths carry no information. Before a network can be used for trait
# models, every edge needs a length. Here the lengths are chosen so that the
# average path lengths between species on the network match the genetic
# distances between species, averaged over the gene trees.
#
# The tutorials are run from the repository root:
#
# ```
# python tutorials/01_network_calibration.py
# ```

# %%
import os
import warnings

from PhyNetPCM import (Report, read_network, write_network, read_name_map,
                       read_gene_tree_directory, gene_tree_distances,
                       write_distance_csv, calibrate_from_pairwise_distances,
                       negative_edges, fix_negative_edge_lengths,
                       network_height)
from PhyNetPCM.Settings import SITE_DIRECTORY

DATA = os.path.join("tutorials", "data")
report = Report("Network calibration")

# %% [markdown]
# ## The network topology
#
# Hybrid nodes are written twice in extended Newick, "#H1", once under each
# parent. The inheritance probability (gamma) is the last field after the
# colons: "#H1:::0.7" has no length, no support, and gamma 0.7.

# %%
net = read_network(os.path.join(DATA, "network_topology.tre"))
print(net.newick())
print("Tips:", net.tip_labels())
print("Reticulations:", [h.label for h in net.hybrids()])

report.add_markdown("## The network topology")
report.add_text(net.newick())
report.add_network(net, caption = "Topology, without edge lengths",
                   use_edge_length = False)

# %% [markdown]
# ## Distances from the gene trees
#
# The gene tree leaves are individuals ("arizonica_1"); the name map says which
# species each individual belongs to. Distances between individuals of two
# species are averaged within each gene. Each gene is then divided by its
# median distance, so that a fast evolving gene does not dominate the average.

# %%
genes = read_gene_tree_directory(os.path.join(DATA, "gene_trees"),
                                 suffix = ".tre")
name_map = read_name_map(os.path.join(DATA, "name_map.csv"),
                         "individual", "species")
print(f"{len(genes)} genes, {len(set(name_map.values()))} species")

distances, counts = gene_tree_distances(genes, name_map)
print(distances.round(3))
print(counts)
write_distance_csv(distances, os.path.join(DATA, "average_distances.csv"))

report.add_markdown("""
## Distances from the gene trees

Average median-normalized distances between species, and the number of genes
in which both species of a pair were sampled.
""")
report.add_table(distances)
report.add_table(counts)

# %% [markdown]
# ## Least squares calibration
#
# With `ultrametric=True` the unknowns are the ages of the internal nodes, so
# all tips end at the same distance from the root. When the distances do not
# fit the topology well, an edge can come out with a negative length: the
# calibration warns about it.

# %%
with warnings.catch_warnings(record = True) as caught:
    warnings.simplefilter("always")
    result = calibrate_from_pairwise_distances(net, distances)
for warning in caught:
    print("Warning:", warning.message)
print(result)

report.add_markdown("## Least squares calibration")
report.add_text(result)
report.add_table(result.fitted.round(4))

# %% [markdown]
# ## Negative edge lengths
#
# Negative lengths have no biological meaning and make the covariance of a
# trait model invalid. The usual repair is to set them to 0 and check that
# the fitted distances barely change.

# %%
for edge in negative_edges(net):
    print(f"{edge.src.label} -> {edge.dest.label}: {edge.get_length():.4f}")
fixed = fix_negative_edge_lengths(net)
print(f"{len(fixed)} edge(s) set to 0")
print(f"Network height: {network_height(net):.4f}")

report.add_markdown("## Negative edge lengths")
report.add_text(f"{len(fixed)} negative edge length(s) set to 0.")
report.add_network(net, caption = "Calibrated network")

# %% [markdown]
# ## Saving the calibrated network
#
# The next tutorials read this file.

# %%
write_network(net, os.path.join(DATA, "calibrated_network.tre"), digits = 6)
report.to_html(os.path.join(SITE_DIRECTORY, "01_network_calibration.html"))
