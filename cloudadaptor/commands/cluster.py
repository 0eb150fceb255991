import typer

from cloudadaptor import commands, errors

app = typer.Typer()

PROVIDER_OPTION = typer.Option("rke", "--provider", "-p", help="Cluster provider (rke or custom)")


@app.command("list")
def list_clusters(
    eid: str = typer.Option(..., help="Enterprise id"),
    provider: str = PROVIDER_OPTION,
):
    """List clusters with their live state."""
    try:
        clusters = commands.get_usecase().list_kubernetes_clusters(eid, provider)
    except errors.BusinessError as e:
        commands.fail(e)
    if not clusters:
        print("🔍 No clusters found.")
        return
    for cluster in clusters:
        version = cluster.current_version or cluster.kubernetes_version or "-"
        print(f"{cluster.name}\t{cluster.cluster_id}\t{cluster.state}\t{version}")


@app.command("describe")
def describe_cluster(
    cluster_id: str = typer.Argument(..., help="Cluster id or name"),
    eid: str = typer.Option(..., help="Enterprise id"),
    provider: str = PROVIDER_OPTION,
):
    """Show one cluster, probing its API."""
    try:
        cluster = commands.get_usecase().get_cluster(provider, eid, cluster_id)
    except errors.BusinessError as e:
        commands.fail(e)
    print(cluster.model_dump_json(indent=2))


@app.command("delete")
def delete_cluster(
    cluster_id: str = typer.Argument(..., help="Cluster id or name"),
    eid: str = typer.Option(..., help="Enterprise id"),
    provider: str = PROVIDER_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Forget a cluster. Its nodes are left untouched."""
    if not yes:
        confirm = typer.confirm(f"Are you sure you want to delete cluster '{cluster_id}'?", default=False)
        if not confirm:
            print("❌ Deletion cancelled.")
            raise typer.Exit()
    try:
        commands.get_usecase().delete_kubernetes_cluster(eid, cluster_id, provider)
    except errors.BusinessError as e:
        commands.fail(e)
    print(f"✅ Cluster {cluster_id} deleted.")


@app.command("kubeconfig")
def kubeconfig(
    cluster_id: str = typer.Argument(..., help="Cluster id or name"),
    eid: str = typer.Option(..., help="Enterprise id"),
    provider: str = PROVIDER_OPTION,
):
    """Print the admin kubeconfig of a cluster."""
    try:
        config = commands.get_usecase().get_kubeconfig(eid, cluster_id, provider)
    except errors.BusinessError as e:
        commands.fail(e)
    print(config)


@app.command("nodes")
def nodes(
    cluster_id: str = typer.Argument(..., help="Cluster id or name"),
    eid: str = typer.Option(..., help="Enterprise id"),
):
    """List the recorded nodes of an RKE cluster."""
    try:
        node_list = commands.get_usecase().get_rke_node_list(eid, cluster_id)
    except errors.BusinessError as e:
        commands.fail(e)
    for node in node_list:
        print(f"{node.ip}\t{node.internal_ip or '-'}\t{','.join(node.roles)}")
