"""HIV-Latency: tick-driven teaching model of HIV latency under ART.

A small agent-and-particle simulation coupling:
  - A fixed population of memory T-cells (Healthy → Active/Latent → Dead)
  - A dynamic population of free virions that drift, reflect and clear
  - Antiretroviral therapy (ART) as a global toggle that drives cells latent
  - Pathogen-triggered reactivation of the latent reservoir

The engine advances on one fixed tick; independent cadences (infection,
shedding, clearance) are decoupled from it by remainder-preserving
accumulators. Presentation layers read snapshots and issue commands.

Not drawn to scale: counts, timings and rates are teaching values, not
clinical ones.
"""

__version__ = "0.1.0"
