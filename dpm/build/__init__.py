from dpm.build.builder import PackageBuilder, build_package

__all__ = ["PackageBuilder", "build_package"]
