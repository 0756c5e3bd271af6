"""VPN Gateway Reconciler (VGR).

Single-node controller that converges declared VPN gateways onto Docker:
 - validates gateway specs and builds a workload descriptor per gateway
 - runs one container per enabled VPN type (SSL / IPsec)
 - aggregates IPsec connection resources and hot-refreshes them inside the
   running IPsec container
 - mirrors the applied configuration into the gateway status
"""
