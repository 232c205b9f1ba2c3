from setuptools import find_packages, setup

package_name = "icp_mapper"

setup(
    name=package_name,
    version="0.1.0",
    packages=find_packages(exclude=["test"]),
    data_files=[
        ("share/ament_index/resource_index/packages", ["resource/" + package_name]),
        ("share/" + package_name, ["package.xml"]),
        ("share/" + package_name + "/launch", ["launch/icp_mapper.launch.py"]),
        ("share/" + package_name + "/config", ["config/icp_mapper.yaml"]),
    ],
    install_requires=["setuptools", "numpy", "scipy", "pydantic>=2", "pyyaml", "rerun-sdk"],
    extras_require={"test": ["pytest"]},
    zip_safe=True,
    maintainer="Will Haber",
    maintainer_email="whab13@mit.edu",
    description="Voxel-deduplicated point cloud mapper with GICP scan-to-map refinement (ROS 2 Jazzy)",
    license="Apache-2.0",
    tests_require=["pytest"],
    entry_points={
        "console_scripts": [
            "icp_mapper_node = icp_mapper.ros.octree_mapper_node:main",
        ],
    },
)
