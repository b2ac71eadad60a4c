"""
Boot-time provisioning of an NDI discovery server.

Each instance runs cfn-init with the `config` config set: it downloads and
installs the NDI SDK, registers the discovery server as a systemd service
that always restarts, starts it, and signals CloudFormation. The scripts are
fail-fast (`bash -xe`); retrying is left to CloudFormation and systemd.
"""

import aws_cdk as cdk
import aws_cdk.aws_ec2 as ec2

NDI_SDK_URL = (
    "https://downloads.ndi.tv/SDK/NDI_SDK_Linux/Install_NDI_SDK_v6_Linux.tar.gz"
)
NDI_DISCOVERY_PORT = 5959

SERVICE_NAME = "ndi-discovery"
SERVICE_UNIT_PATH = f"/etc/systemd/{SERVICE_NAME}.service"
INSTALL_SCRIPT_PATH = "/tmp/install-ndi-discovery.sh"

HOME = "/home/ec2-user"
BINARY_DIR = f"{HOME}/bin/x86_64-linux-gnu"

CONFIG_SET = "config"


def discovery_service_unit() -> str:
    return "\n".join(
        [
            "[Unit]",
            "Description=NDI Discovery Service",
            "",
            "[Service]",
            "ExecStartPre=/bin/sleep 30",
            "User=ec2-user",
            f"WorkingDirectory={BINARY_DIR}",
            f"ExecStart={BINARY_DIR}/ndi-discovery-server",
            "Restart=always",
            "",
            "[Install]",
            "WantedBy=multi-user.target",
            "",
        ]
    )


def install_script(sdk_url: str = NDI_SDK_URL, home: str = HOME) -> str:
    """Shell script that installs the NDI SDK into the ec2-user home."""
    archive = sdk_url.rsplit("/", 1)[-1]
    installer = archive.removesuffix(".tar.gz") + ".sh"
    return "\n".join(
        [
            "#!/bin/bash -xe",
            f"cd {home}",
            "",
            "yum update -y",
            "",
            f"wget {sdk_url}",
            f"tar -xzf {archive}",
            # the installer pages its license and waits for a "y"
            f"yes | ./{installer}",
            "",
            f"rm -f {archive}",
            f"rm -f {installer}",
            "cp -r 'NDI SDK for Linux'/* ./",
            "rm -r 'NDI SDK for Linux'/",
            f"chown -R ec2-user:ec2-user {home}",
            "",
        ]
    )


def install_commands() -> list[tuple[str, str]]:
    """Keyed cfn-init commands of the configInstance config, in run order."""
    return [
        ("01-install-ndi-discovery", f"bash -xe {INSTALL_SCRIPT_PATH}"),
        ("02-enable-ndi-service", f"systemctl enable {SERVICE_UNIT_PATH}"),
    ]


def finalize_commands() -> list[tuple[str, str]]:
    return [("01-start-ndi-service", f"systemctl start {SERVICE_NAME}")]


def discovery_user_data() -> ec2.UserData:
    """User data run before cfn-init; CDK appends the cfn-init and cfn-signal calls."""
    user_data = ec2.UserData.for_linux()
    user_data.add_commands("yum install -y aws-cfn-bootstrap")
    return user_data


def _commands(commands: list[tuple[str, str]]) -> list[ec2.InitElement]:
    return [
        ec2.InitCommand.shell_command(command, key=key)
        for key, command in commands
    ]


def discovery_init(sdk_url: str = NDI_SDK_URL) -> ec2.CloudFormationInit:
    return ec2.CloudFormationInit.from_config_sets(
        config_sets={CONFIG_SET: ["configInstance", "finalize"]},
        configs={
            "configInstance": ec2.InitConfig(
                [
                    ec2.InitFile.from_string(
                        SERVICE_UNIT_PATH, discovery_service_unit()
                    ),
                    ec2.InitFile.from_string(
                        INSTALL_SCRIPT_PATH, install_script(sdk_url), mode="000755"
                    ),
                    *_commands(install_commands()),
                ]
            ),
            "finalize": ec2.InitConfig(_commands(finalize_commands())),
        },
    )


def discovery_init_options(
    timeout: cdk.Duration | None = None,
) -> ec2.ApplyCloudFormationInitOptions:
    # the SDK download and yum update easily take longer than the 5 minute default
    return ec2.ApplyCloudFormationInitOptions(
        config_sets=[CONFIG_SET],
        timeout=timeout or cdk.Duration.minutes(15),
        print_log=True,
    )
