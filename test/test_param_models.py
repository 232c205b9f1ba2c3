"""
Parameter model tests: defaults, validation and YAML loading.
"""

import logging

import pytest
import yaml
from pydantic import ValidationError

from icp_mapper.common.logging_utils import configure_package_logging, verbosity_to_level
from icp_mapper.common.param_models import MapperParams, load_mapper_params


class TestMapperParams:
    def test_defaults(self):
        params = MapperParams()
        assert params.octree_resolution == 0.5
        assert params.search_eps == 0.5
        assert params.map_frame == "map"
        assert params.robot_frame == "base_link"
        assert params.icp_max_correspondence_distance == 1.0
        assert params.trajectory_export_path == ""

    def test_gicp_config_mirrors_fields(self):
        params = MapperParams(icp_max_iterations=7, icp_max_correspondence_distance=2.5)
        config = params.gicp_config()
        assert config.max_iterations == 7
        assert config.max_correspondence_distance == 2.5
        assert config.ransac_iterations == 0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"octree_resolution": 0.0},
            {"search_eps": -0.1},
            {"verbosity_level": 4},
            {"icp_k_correspondences": 2},
            {"map_frame": "  "},
            {"not_a_parameter": 1},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValidationError):
            MapperParams(**kwargs)

    def test_assignment_is_validated(self):
        params = MapperParams()
        with pytest.raises(ValidationError):
            params.octree_resolution = -1.0


class TestLoading:
    def test_plain_mapping(self, tmp_path):
        path = tmp_path / "params.yaml"
        path.write_text(yaml.safe_dump({"octree_resolution": 0.25, "cloud_topic": "/points"}))
        params = load_mapper_params(str(path))
        assert params.octree_resolution == 0.25
        assert params.cloud_topic == "/points"

    @pytest.mark.parametrize("key", ["icp_mapper", "/icp_mapper", "/**"])
    def test_ros_parameter_wrapper(self, tmp_path, key):
        path = tmp_path / "params.yaml"
        path.write_text(yaml.safe_dump({key: {"ros__parameters": {"search_eps": 0.1}}}))
        assert load_mapper_params(str(path)).search_eps == 0.1

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_mapper_params(str(path)) == MapperParams()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_mapper_params(str(tmp_path / "nope.yaml"))

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError):
            load_mapper_params(str(path))

    def test_packaged_config_is_valid(self, packaged_config_path):
        params = load_mapper_params(packaged_config_path)
        assert params == MapperParams()


class TestLogging:
    @pytest.mark.parametrize(
        "verbosity, level",
        [(0, logging.ERROR), (1, logging.WARNING), (2, logging.INFO), (3, logging.DEBUG), (9, logging.DEBUG), (-2, logging.ERROR)],
    )
    def test_verbosity_to_level(self, verbosity, level):
        assert verbosity_to_level(verbosity) == level

    def test_configure_sets_package_logger(self):
        logger = configure_package_logging(3)
        assert logger.name == "icp_mapper"
        assert logging.getLogger("icp_mapper.mapping.mapper").getEffectiveLevel() == logging.DEBUG
        configure_package_logging(2)
