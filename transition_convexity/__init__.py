"""
transition_convexity

Convexity adjustment of forward rates across a discounting benchmark
transition (e.g. EFFR -> SOFR) under Gaussian short-rate models.

Modules:
- integration: repeated 1-D / 2-D / 3-D adaptive quadrature
- models: volatility curves, time measure, Hull-White and G2++ parameters
- formulas: closed-form model variance/covariance coefficients
- convexity: convexity adjustment (analytic and numerical) and adjusted forward
- curves: discount curves used by the analyses
- scenarios: parameter sweeps and grids
- export, cli: CSV output and command-line driver
"""
