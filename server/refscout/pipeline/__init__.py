from __future__ import annotations

from server.refscout.pipeline.resolve import Resolver, build_adapters, build_resolver, merge_results

__all__ = ["Resolver", "build_adapters", "build_resolver", "merge_results"]
